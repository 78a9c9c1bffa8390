# main.py
import asyncio
import sys
import questionary
from rich.live import Live
from rich.table import Table
from rich.layout import Layout
from rich.console import Console
from rich.panel import Panel

# Import Engines
from signal_pipeline.cache import TTLCache
from signal_pipeline.config import load_config
from signal_pipeline.errors import ConfigError
from signal_pipeline.execution import CcxtOrderBackend, DryRunBackend, ExecutionEngine
from signal_pipeline.logger import setup_console_logger, AsyncAuditLogger
from signal_pipeline.market_engine import MarketEngine
from signal_pipeline.narrator import RuleBasedNarrator
from signal_pipeline.notifier import LogNotifier
from signal_pipeline.pipeline import SignalPipeline
from signal_pipeline.rate_limiter import RateLimiter
from signal_pipeline.store import MemoryStore

# --- UI HELPER FUNCTIONS ---

def startup_selection(config):
    """Interactive CLI to select the assets to watch."""
    print("\n🚀 SIGNAL PIPELINE CONTROL \n")
    assets = questionary.checkbox("Select Assets to Watch:", choices=config['assets']).ask()
    if not assets:
        print("No assets selected. Exiting.")
        sys.exit()
    return assets

def generate_dashboard(pipeline, execution, assets):
    """
    Creates the Rich Console Dashboard layout.
    Shows latest snapshots with technicals and the execution history.
    """

    # 1. Market Table
    market_table = Table(title="📡 Market Snapshots")
    market_table.add_column("Asset", style="cyan")
    market_table.add_column("Price", justify="right", style="green")
    market_table.add_column("RSI", justify="right")
    market_table.add_column("Risk", justify="right")
    market_table.add_column("Signal", style="magenta")

    for asset in assets:
        state = pipeline.latest.get(asset)
        if not state:
            market_table.add_row(asset, "-", "-", "-", "-")
            continue
        snap = state['snapshot']
        signal = state['signal']
        rsi = f"{float(snap.rsi_14):.1f}" if snap.rsi_14 is not None else "-"
        sig = f"{signal.signal_type.value} ({float(signal.confidence):.2f})" if signal else "-"
        market_table.add_row(asset, f"${float(snap.price):,.4f}", rsi, f"{state['risk']:.2f}", sig)

    # 2. Execution Table
    exec_table = Table(title="💰 Executions")
    exec_table.add_column("Time", style="dim")
    exec_table.add_column("Asset", style="cyan")
    exec_table.add_column("Size", justify="right")
    exec_table.add_column("Price", justify="right", style="green")
    exec_table.add_column("Status")

    for record in execution.get_execution_history()[-8:]:
        exec_table.add_row(
            record.timestamp.strftime('%H:%M:%S'), record.asset_address,
            str(record.size), f"{float(record.execution_price):,.4f}", record.status.value
        )

    # Layout Construction
    layout = Layout()
    layout.split_column(
        Layout(name="top"),
        Layout(name="bottom")
    )

    layout["top"].split_row(
        Layout(Panel(market_table)),
        Layout(Panel(exec_table))
    )

    cooldown = execution.cooldown_remaining()
    status = f"COOLDOWN {cooldown:.0f}s" if cooldown else "READY"
    footer = Panel(
        f"[bold gold1]ACTIVE ORDERS: {len(execution.get_active_orders())} | EXECUTION: {status}[/bold gold1]",
        style="white on blue"
    )
    layout["bottom"].update(footer)
    layout["bottom"].size = 3

    return layout

# --- MAIN CONTROLLER ---

class PipelineBot:
    def __init__(self, config, selected_assets):
        self.config = config
        self.assets = selected_assets

        self.audit_log = AsyncAuditLogger(self.config['audit']['trade_log'])
        self.logger = setup_console_logger("SignalPipeline", self.config['system']['log_level'])

        self.limiter = RateLimiter(self.config['rate_limit']['rate'], self.config['rate_limit']['burst'])
        self.cache = TTLCache(single_flight=self.config['cache']['single_flight'])
        self.market = MarketEngine(self.config, self.logger, self.limiter, self.cache)
        self.store = MemoryStore()
        self.execution = None
        self.pipeline = None

    async def run(self):
        try:
            print("Initializing Diagnostic Checks...")
            await self.audit_log.start()
            is_healthy = await self.market.initialize()
            if not is_healthy:
                print("❌ Diagnostic Failed. Check exchange settings and API keys.")
                return

            if self.config['system']['dry_run']:
                backend = DryRunBackend(self.logger)
            else:
                backend = CcxtOrderBackend(self.market.exchange, self.logger)

            self.execution = ExecutionEngine(self.config, self.logger, backend)
            self.pipeline = SignalPipeline(
                self.config, self.market, self.store, RuleBasedNarrator(self.config, self.logger),
                self.execution, self.logger, audit_logger=self.audit_log, notifier=LogNotifier(self.logger),
            )
            await self.pipeline.startup()

            poller = asyncio.create_task(self.pipeline.run_forever(self.assets))
            console = Console()
            with Live(console=console, refresh_per_second=2) as live:
                while not poller.done():
                    live.update(generate_dashboard(self.pipeline, self.execution, self.assets))
                    await asyncio.sleep(0.5)
            await poller
        finally:
            print("Shutting down resources...")
            await self.audit_log.stop()
            await self.market.shutdown()

if __name__ == "__main__":
    try:
        raw_conf = load_config("config.yaml")
    except ConfigError as e:
        print(f"❌ Invalid configuration: {e}")
        sys.exit(1)
    try:
        sel_assets = startup_selection(raw_conf)
        bot = PipelineBot(raw_conf, sel_assets)
        try:
            import uvloop
            asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())
        except ImportError:
            pass
        asyncio.run(bot.run())
    except KeyboardInterrupt:
        print("\n🛑 Pipeline Stopped by User.")
        sys.exit()
