"""Comptoir -- message pre-analysis and AI reply orchestration.

Entry point that wires the components against the SQLite reference store.

Usage::

    python main.py tenant acme --name "Acme" --credits 100
    python main.py product acme p1 "Poulet rôti" --price 5000 --stock 2
    python main.py analyze "je veux 3 poulets" --tenant acme
    python main.py reply "je veux 3 poulets" --tenant acme --conversation c1
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

# Ensure project root is on sys.path so that ``src.*`` imports resolve.
_PROJECT_ROOT = Path(__file__).resolve().parent
if str(_PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(_PROJECT_ROOT))

from config.settings import Settings
from src.ai.orchestrator import AIOrchestrator
from src.ai.prompts import PromptManager, SystemPromptBuilder
from src.ai.registry import ProviderRegistry
from src.analysis.analyzer import MessageAnalyzer
from src.models.database import Database
from src.models.schemas import AgentConfig, ChatRole, InboundMessage, Product
from src.models.store import SqliteCatalog, SqliteConversationHistory, SqliteCreditLedger
from src.utils.logger import get_logger, setup_logging

log = get_logger(__name__, component="main")


async def main(args: argparse.Namespace) -> None:
    """Bootstrap the components and run one command."""

    # ---- Settings --------------------------------------------------------
    settings = Settings()
    setup_logging(settings.log_level, settings.abs_log_dir, force=True)
    log.info("comptoir.starting", command=args.command)

    # ---- Database --------------------------------------------------------
    db = Database(str(settings.abs_db_path))
    await db.connect()

    try:
        catalog = SqliteCatalog(db)
        history = SqliteConversationHistory(db)
        ledger = SqliteCreditLedger(db)

        if args.command == "tenant":
            await ledger.ensure_tenant(
                args.tenant, args.name or args.tenant, args.credits, args.unlimited
            )
            print(f"tenant {args.tenant}: {await ledger.balance(args.tenant)} credit(s)")
            return

        if args.command == "product":
            await catalog.upsert_product(
                args.tenant,
                Product(
                    id=args.product_id,
                    name=args.name,
                    sku=args.sku,
                    price=args.price,
                    stock=args.stock,
                    category=args.category,
                ),
            )
            print(f"product {args.product_id} saved")
            return

        # ---- Analysis ----------------------------------------------------
        analyzer = MessageAnalyzer(catalog=catalog, history=history, settings=settings)
        message = InboundMessage(
            tenant_id=args.tenant,
            conversation_id=args.conversation,
            text=args.text,
        )
        analysis = await analyzer.analyze(message)

        if args.command == "analyze":
            print(analysis.model_dump_json(indent=2))
            return

        # ---- AI layer ----------------------------------------------------
        registry = ProviderRegistry.from_settings(settings)
        prompts = SystemPromptBuilder(
            PromptManager(str(_PROJECT_ROOT / "config" / "prompts.yaml")),
            max_prompt_length=settings.max_prompt_length,
            knowledge_snippet_max=settings.knowledge_snippet_max,
        )
        orchestrator = AIOrchestrator(registry, prompts, credits=ledger, settings=settings)

        turns = await history.turns(args.conversation) if args.conversation else []
        agent = AgentConfig(
            id=args.agent_name,
            tenant_id=args.tenant,
            name=args.agent_name,
            model=args.model,
        )
        response = await orchestrator.generate(agent, turns, message, analysis=analysis)

        if args.conversation:
            await history.append(args.tenant, args.conversation, ChatRole.USER, args.text)
            await history.append(
                args.tenant, args.conversation, ChatRole.ASSISTANT, response.content
            )
        print(response.model_dump_json(indent=2))
    finally:
        await db.close()
        log.info("comptoir.stopped")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Comptoir -- message analysis and AI replies",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    tenant = sub.add_parser("tenant", help="Create a tenant with a credit balance")
    tenant.add_argument("tenant")
    tenant.add_argument("--name", default=None)
    tenant.add_argument("--credits", type=float, default=0.0)
    tenant.add_argument("--unlimited", action="store_true")

    product = sub.add_parser("product", help="Create or update a catalog product")
    product.add_argument("tenant")
    product.add_argument("product_id")
    product.add_argument("name")
    product.add_argument("--sku", default=None)
    product.add_argument("--price", type=float, default=0.0)
    product.add_argument("--stock", type=int, default=0)
    product.add_argument("--category", default=None)

    for name, help_text in (
        ("analyze", "Print the analysis of one message as JSON"),
        ("reply", "Analyze one message and generate a reply"),
    ):
        command = sub.add_parser(name, help=help_text)
        command.add_argument("text")
        command.add_argument("--tenant", required=True)
        command.add_argument("--conversation", default=None)
        if name == "reply":
            command.add_argument("--model", default=None, help="Agent model name or alias")
            command.add_argument("--agent-name", default="assistant")
    return parser


def cli() -> None:
    """Parse CLI arguments and run the requested command."""
    args = _build_parser().parse_args()
    asyncio.run(main(args))


if __name__ == "__main__":
    cli()
