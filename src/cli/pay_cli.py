#!/usr/bin/env python3
"""
mkpay: terminal front-end for MK Volume Bot plan purchases

Usage:
    mkpay plans [--json]
    mkpay pay <plan> [--yes]
    mkpay purchases [--json]
    mkpay              (interactive)
"""

import argparse
import asyncio
import json as json_lib
import sys
from typing import Optional

import httpx
import structlog
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from solders.transaction import Transaction

from src.config import get_payment_config
from src.ledger.resolver import EndpointResolver
from src.payments.errors import WalletUnavailableError
from src.payments.models import (
    PLANS,
    FailureKind,
    PaymentIntent,
    PaymentStatus,
    StatusUpdate,
    list_plans,
)
from src.payments.recorder import BackendRecorder
from src.payments.state_machine import PaymentStateMachine
from src.wallet.provider import KeypairWallet

logger = structlog.get_logger()
console = Console()

STATUS_STYLES = {
    PaymentStatus.SUCCEEDED: "bold green",
    PaymentStatus.FAILED: "bold red",
    PaymentStatus.CANCELLED: "yellow",
}


class PaymentCLI:
    """
    CLI for:
    1. Listing plans
    2. Paying for a plan from the configured local wallet
    3. Listing purchases recorded for that wallet
    """

    def __init__(self, json_output: bool = False, assume_yes: bool = False):
        self.config = get_payment_config()
        self.json_output = json_output
        self.assume_yes = assume_yes

    def _output(self, data, human_message: Optional[str] = None):
        """Output data in JSON or human-readable format"""
        if self.json_output:
            print(json_lib.dumps(data, indent=2, default=str))
        elif human_message:
            console.print(human_message)

    def display_plans(self):
        plans = list_plans()
        if self.json_output:
            self._output([p.model_dump(mode="json") for p in plans])
            return

        table = Table(title="MK Volume Bot Plans", show_header=True, header_style="bold magenta")
        table.add_column("Plan", style="cyan", no_wrap=True)
        table.add_column("Label", style="white")
        table.add_column("Hours", justify="right", style="blue")
        table.add_column("Price (SOL)", justify="right", style="green")

        for plan in plans:
            table.add_row(plan.key, plan.label, str(plan.hours), f"{plan.sol}")

        console.print(table)

    def _approve(self, tx: Transaction) -> bool:
        """Stand-in for the wallet's signature prompt"""
        if self.assume_yes:
            return True
        answer = console.input("[bold]Sign and send this transfer? [y/N]: [/bold]").strip().lower()
        return answer in ("y", "yes")

    def _on_status(self, update: StatusUpdate):
        if self.json_output:
            return
        style = STATUS_STYLES.get(update.status, "cyan")
        console.print(f"[{style}]{update.status.value}[/{style}] {update.message}")

    def _build_wallet(self) -> Optional[KeypairWallet]:
        try:
            return KeypairWallet(self.config.wallet_secret_key, approve=self._approve)
        except WalletUnavailableError as e:
            logger.warning("local_wallet_unavailable", error=str(e))
            return None

    async def pay(self, plan_key: str) -> Optional[PaymentIntent]:
        """Run one purchase attempt end to end"""
        plan = PLANS.get(plan_key)
        if plan is None:
            self._output({"error": f"Unknown plan '{plan_key}'"}, f"[red]Unknown plan '{plan_key}'[/red]")
            return None

        resolver = EndpointResolver.from_urls(
            self.config.rpc_endpoints,
            probe_timeout=self.config.rpc_probe_timeout,
            request_timeout=self.config.rpc_request_timeout,
            commitment=self.config.commitment,
        )
        recorder = BackendRecorder(self.config.backend_url, timeout=self.config.backend_timeout)
        machine = PaymentStateMachine(
            plan=plan,
            wallet=self._build_wallet(),
            resolver=resolver,
            recorder=recorder,
            config=self.config,
            on_status=self._on_status,
        )

        try:
            if not self.json_output:
                console.print(Panel(f"{plan.label}\n[green]{plan.price} SOL[/green]", title="Purchase"))

            intent = await machine.connect()
            if intent.status == PaymentStatus.WALLET_CONNECTED:
                if not self.json_output:
                    console.print(
                        f"Wallet: {intent.payer_address[:8]}...{intent.payer_address[-8:]}  "
                        f"Balance: {intent.payer_balance:.4f} SOL  "
                        f"Required: {machine.required_amount} SOL"
                    )

                if self.assume_yes or console.input(f"Pay {plan.price} SOL? [y/N]: ").strip().lower() in ("y", "yes"):
                    intent = await machine.pay()
                else:
                    machine.cancel()

            self._report(machine.intent)
            return machine.intent
        finally:
            await recorder.aclose()
            await resolver.aclose()

    def _report(self, intent: PaymentIntent):
        if self.json_output:
            self._output(intent.model_dump(mode="json"))
            return

        if intent.status == PaymentStatus.SUCCEEDED:
            console.print(f"[bold green]Payment successful![/bold green] Signature: {intent.transaction_signature}")
        elif intent.status == PaymentStatus.FAILED and intent.failure is not None:
            if intent.failure.kind == FailureKind.RECORDING_FAILED:
                console.print(Panel(intent.failure.message, title="Action required", style="bold red"))
            else:
                console.print(f"[red]{intent.failure.message}[/red]")
        elif intent.status == PaymentStatus.IDLE:
            console.print("[yellow]Wallet not connected[/yellow]")

    async def purchases(self):
        """List purchases recorded for the local wallet"""
        wallet = self._build_wallet()
        if wallet is None:
            self._output({"error": "No wallet configured"}, "[red]No wallet configured (set WALLET_SECRET_KEY)[/red]")
            return

        address = await wallet.connect()
        async with httpx.AsyncClient(timeout=self.config.backend_timeout) as client:
            try:
                response = await client.get(
                    f"{self.config.backend_url.rstrip('/')}/api/purchases",
                    params={"wallet_address": address}
                )
                response.raise_for_status()
            except httpx.HTTPError as e:
                logger.error("purchase_listing_failed", error=str(e))
                self._output({"error": str(e)}, f"[red]Failed to list purchases: {e}[/red]")
                return

        purchases = response.json()
        if self.json_output:
            self._output(purchases)
            return

        if not purchases:
            console.print("[yellow]No purchases recorded[/yellow]")
            return

        table = Table(title=f"Purchases for {address[:8]}...", show_header=True, header_style="bold magenta")
        table.add_column("Purchase ID", style="cyan", no_wrap=True)
        table.add_column("Hours", justify="right")
        table.add_column("SOL", justify="right", style="green")
        table.add_column("Status")
        table.add_column("Signature", style="white")
        for p in purchases:
            table.add_row(
                p["purchase_id"],
                str(p["hours"]),
                str(p["sol_amount"]),
                p["status"],
                p["transaction_signature"][:16] + "...",
            )
        console.print(table)

    async def interactive_mode(self):
        """Run interactive CLI mode"""
        console.print("[bold cyan]MK Volume Bot Payments[/bold cyan]")
        console.print("Commands: plans, pay, purchases, quit\n")

        while True:
            try:
                command = console.input("[bold green]>[/bold green] ").strip().lower()

                if command == "quit" or command == "exit":
                    break

                elif command == "plans":
                    self.display_plans()

                elif command == "pay":
                    plan_key = console.input(f"Plan ({'/'.join(PLANS)}): ").strip().lower()
                    await self.pay(plan_key)

                elif command == "purchases":
                    await self.purchases()

                else:
                    console.print(f"[yellow]Unknown command: {command}[/yellow]")

            except KeyboardInterrupt:
                console.print("\n[yellow]Use 'quit' to exit[/yellow]")


def main():
    parser = argparse.ArgumentParser(
        prog="mkpay",
        description="MK Volume Bot - pay for trading time with SOL",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  mkpay plans
  mkpay pay starter
  mkpay pay weekly --yes
  mkpay purchases --json
        """
    )
    parser.add_argument("--json", "-j", action="store_true", help="Output in JSON format")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")
    subparsers.add_parser("plans", help="List plans")
    pay_parser = subparsers.add_parser("pay", help="Pay for a plan")
    pay_parser.add_argument("plan", choices=sorted(PLANS), help="Plan key")
    pay_parser.add_argument("--yes", "-y", action="store_true", help="Skip confirmation prompts")
    subparsers.add_parser("purchases", help="List recorded purchases for the local wallet")

    args = parser.parse_args()

    config = get_payment_config()
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.JSONRenderer() if config.log_format == "json" else structlog.dev.ConsoleRenderer()
        ]
    )

    async def run() -> int:
        cli = PaymentCLI(json_output=args.json, assume_yes=getattr(args, "yes", False))
        if args.command == "plans":
            cli.display_plans()
        elif args.command == "pay":
            intent = await cli.pay(args.plan)
            if intent is None or intent.status != PaymentStatus.SUCCEEDED:
                return 1
        elif args.command == "purchases":
            await cli.purchases()
        else:
            await cli.interactive_mode()
        return 0

    sys.exit(asyncio.run(run()))


if __name__ == "__main__":
    main()
