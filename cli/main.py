from __future__ import annotations

import argparse
import asyncio
from dataclasses import dataclass
from datetime import timezone
from typing import Sequence

from domain.errors import FormPilotError, PathNotAllowedError
from domain.models import (
    ActionResult,
    Completed,
    EngineConfig,
    Intent,
    NeedsConfirmation,
    NeedsInput,
    NeedsIntervention,
    OperatorInput,
    OperatorInputKind,
    Outcome,
    RunContext,
)
from domain.ports import (
    AnswerRepositoryPort,
    BrowserDriverPort,
    ClockPort,
    FormRunRepositoryPort,
    IdGeneratorPort,
    LoggerPort,
    OperatorChannelPort,
    OutputStorePort,
)
from domain.services import (
    ActionExecutor,
    AnswerResolver,
    ApplicationEngine,
    CaptureLadder,
    FormCompletionLoop,
    InteractionGate,
    ObservationCache,
    SessionManager,
    default_strategies,
)
from infra.browser import PlaywrightBrowserDriver
from infra.config import FileSystemConfigProvider
from infra.documents import FileSystemDocumentStore, FileSystemOutputStore
from infra.interaction import ConsoleOperatorChannel
from infra.persistence import SQLiteAnswerRepository, SQLiteFormRunRepository
from infra.runtime import StructuredLogger, SystemClock, UuidIdGenerator


@dataclass(frozen=True)
class EngineParts:
    engine: ApplicationEngine
    sessions: SessionManager
    cache: ObservationCache
    ladder: CaptureLadder
    executor: ActionExecutor
    loop: FormCompletionLoop
    gate: InteractionGate
    resolver: AnswerResolver


def build_engine(
    *,
    config: EngineConfig,
    driver: BrowserDriverPort,
    channel: OperatorChannelPort | None,
    answer_repo: AnswerRepositoryPort | None,
    run_repo: FormRunRepositoryPort | None,
    clock: ClockPort,
    id_generator: IdGeneratorPort,
    logger: LoggerPort,
    output_store: OutputStorePort | None = None,
    run_context: RunContext | None = None,
) -> EngineParts:
    sessions = SessionManager(
        driver=driver,
        id_generator=id_generator,
        logger=logger,
        endpoint=config.cdp_endpoint,
    )
    cache = ObservationCache(sessions=sessions, logger=logger)
    gate = InteractionGate(logger=logger, channel=channel)
    resolver = AnswerResolver(logger=logger, answers=answer_repo)
    executor = ActionExecutor(sessions=sessions, cache=cache, gate=gate, logger=logger)
    ladder = CaptureLadder(
        strategies=default_strategies(driver),
        cache=cache,
        driver=driver,
        logger=logger,
        capture_profile=config.capture_profile,
    )
    loop = FormCompletionLoop(
        executor=executor,
        cache=cache,
        gate=gate,
        resolver=resolver,
        logger=logger,
        max_iterations=config.max_form_iterations,
    )
    engine = ApplicationEngine(
        sessions=sessions,
        cache=cache,
        ladder=ladder,
        executor=executor,
        loop=loop,
        gate=gate,
        resolver=resolver,
        clock=clock,
        id_generator=id_generator,
        logger=logger,
        run_repo=run_repo,
        output_store=output_store,
        run_context=run_context,
        acquire_mode=config.acquire_mode,
    )
    return EngineParts(
        engine=engine,
        sessions=sessions,
        cache=cache,
        ladder=ladder,
        executor=executor,
        loop=loop,
        gate=gate,
        resolver=resolver,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="formpilot")
    parser.add_argument("--db-path", default="formpilot.db")
    parser.add_argument("--config-dir", default="./config", help="Path to config folder")
    sub = parser.add_subparsers(dest="command", required=True)

    run_p = sub.add_parser("run", help="Open a page, complete its form and submit after confirmation")
    run_p.add_argument("url")
    run_p.add_argument("--form-id", required=True)
    run_p.add_argument("--provider", choices=["generic", "google"], default="generic")
    run_p.add_argument("--submit-text", default="Submit", help="Visible text of the submit button")
    run_p.add_argument("--no-submit", action="store_true", help="Stop once the form is complete")
    run_p.add_argument("--close", action="store_true", help="Close the browser session when done")

    audit_p = sub.add_parser("audit", help="Print the unanswered required questions of a page")
    audit_p.add_argument("url")
    audit_p.add_argument("--form-id", default="form")
    audit_p.add_argument("--provider", choices=["generic", "google"], default="generic")

    sub.add_parser("runs", help="List recorded form runs")

    files_p = sub.add_parser("files", help="Browse reference documents in the input directories")
    files_sub = files_p.add_subparsers(dest="files_command", required=True)
    list_p = files_sub.add_parser("list")
    list_p.add_argument("path", nargs="?", default=None)
    read_p = files_sub.add_parser("read")
    read_p.add_argument("path")
    read_p.add_argument("--max-chars", type=int, default=20_000)

    validate_p = sub.add_parser("validate-config")
    validate_p.add_argument(
        "--check-cdp",
        action="store_true",
        help="Also check that the remote-debugging endpoint answers",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config_provider = FileSystemConfigProvider(args.config_dir)

    if args.command == "validate-config":
        return _handle_validate(args, config_provider)

    if args.command == "runs":
        with SQLiteFormRunRepository(db_path=args.db_path) as run_repo:
            for rec in run_repo.list_all():
                updated = rec.updated_at.astimezone(timezone.utc).isoformat() if rec.updated_at else "-"
                unresolved = ",".join(rec.unresolved) or "-"
                print(f"{rec.form_id} | {updated} | {rec.url} | {rec.status.value} | {unresolved}")
        return 0

    errors = config_provider.validate()
    if errors:
        print("Config validation failed:")
        for err in errors:
            print(f"  - {err}")
        return 1

    if args.command == "files":
        return _handle_files(args, config_provider)

    try:
        if args.command == "audit":
            return asyncio.run(_handle_audit(args, config_provider))
        if args.command == "run":
            return asyncio.run(_handle_run(args, config_provider))
    except FormPilotError as exc:
        print(f"error: {exc}")
        return 1

    raise SystemExit(f"Unsupported command: {args.command}")


def _handle_validate(args: argparse.Namespace, config_provider: FileSystemConfigProvider) -> int:
    errors = config_provider.validate()
    if errors:
        print("Config validation failed:")
        for err in errors:
            print(f"  - {err}")
        return 1

    cfg = config_provider.get_config()
    print(f"Config OK: endpoint={cfg.cdp_endpoint}, mode={cfg.acquire_mode.value}, profile={cfg.capture_profile}")
    print(f"Debug mode: {'ON' if cfg.debug_mode else 'OFF'}")
    if args.check_cdp:
        result = asyncio.run(config_provider.validate_connectivity())
        if not result.ok:
            print("Connectivity check failed:")
            for err in result.errors:
                print(f"  - {err}")
            return 1
        print(f"Browser: {result.browser_version or 'not checked (websocket endpoint)'}")
    return 0


def _handle_files(args: argparse.Namespace, config_provider: FileSystemConfigProvider) -> int:
    cfg = config_provider.get_config()
    store = FileSystemDocumentStore(input_dirs=cfg.input_dirs)
    try:
        if args.files_command == "list":
            for name in store.list_dir(args.path or (cfg.input_dirs[0] if cfg.input_dirs else ".")):
                print(name)
        elif args.path.lower().endswith(".pdf"):
            print(store.read_pdf_text(args.path, max_chars=args.max_chars))
        else:
            print(store.read_text(args.path, max_chars=args.max_chars))
    except (PathNotAllowedError, FileNotFoundError, ValueError) as exc:
        print(f"error: {exc}")
        return 1
    return 0


def _make_parts(
    cfg: EngineConfig,
    *,
    logger: StructuredLogger,
    ids: UuidIdGenerator,
    channel: OperatorChannelPort | None,
    answer_repo: AnswerRepositoryPort | None,
    run_repo: FormRunRepositoryPort | None,
    output_store: OutputStorePort | None = None,
    run_context: RunContext | None = None,
) -> EngineParts:
    return build_engine(
        config=cfg,
        driver=PlaywrightBrowserDriver(
            headless=cfg.headless,
            action_timeout_ms=cfg.action_timeout_ms,
            logger=logger,
        ),
        channel=channel,
        answer_repo=answer_repo,
        run_repo=run_repo,
        clock=SystemClock(),
        id_generator=ids,
        logger=logger,
        output_store=output_store,
        run_context=run_context,
    )


async def _handle_audit(args: argparse.Namespace, config_provider: FileSystemConfigProvider) -> int:
    cfg = config_provider.get_config()
    parts = _make_parts(
        cfg,
        logger=StructuredLogger(),
        ids=UuidIdGenerator(),
        channel=None,
        answer_repo=None,
        run_repo=None,
    )
    try:
        opened = await parts.engine.open(args.url)
        if isinstance(opened, NeedsIntervention):
            print(f"Manual intervention needed before auditing: {opened.reason}")
            return 1
        audit = await parts.engine.audit(args.form_id, args.provider)
        print(f"{audit.form_id}: {audit.unanswered_count} of {audit.total_count} required questions unanswered")
        for q in audit.unresolved:
            print(f"  - [{q.kind}] {q.label} ({q.selector or q.question_id})")
        return 0
    finally:
        await parts.sessions.driver.close()


async def _handle_run(args: argparse.Namespace, config_provider: FileSystemConfigProvider) -> int:
    cfg = config_provider.get_config()
    reference = config_provider.get_reference_data()
    channel = ConsoleOperatorChannel()
    logger = StructuredLogger()
    ids = UuidIdGenerator()
    output_store = FileSystemOutputStore(base_dir=cfg.output_dir)
    run_context = RunContext(run_id=ids.new_run_id(), is_debug=cfg.debug_mode)
    metadata: dict[str, object] = {
        "run_id": run_context.run_id,
        "url": args.url,
        "form_id": args.form_id,
        "provider": args.provider,
        "debug_mode": cfg.debug_mode,
    }

    with SQLiteAnswerRepository(db_path=args.db_path) as answer_repo, \
            SQLiteFormRunRepository(db_path=args.db_path) as run_repo:
        parts = _make_parts(
            cfg,
            logger=logger,
            ids=ids,
            channel=channel,
            answer_repo=answer_repo,
            run_repo=run_repo,
            output_store=output_store,
            run_context=run_context,
        )
        engine = parts.engine
        try:
            outcome = await engine.open(args.url)
            outcome = await _settle(engine, channel, outcome, _noop)
            outcome = await _settle(
                engine,
                channel,
                await engine.complete_form(args.form_id, reference, args.provider),
                lambda: engine.complete_form(args.form_id, reference, args.provider),
            )
            print(f"Form complete: {_describe(outcome)}")
            metadata["completed"] = True

            if args.no_submit or cfg.debug_mode:
                print("Submit skipped (--no-submit or debug mode).")
                metadata["submitted"] = False
                return 0
            return await _submit(engine, channel, args, metadata)
        finally:
            metadata["dom_version"] = parts.sessions.session.dom_version
            output_store.save_run_metadata(run_context, metadata)
            if args.close:
                await engine.close()
            else:
                # Process exit ends the connection; an attached browser stays open.
                await parts.sessions.driver.close()


async def _settle(engine: ApplicationEngine, channel: ConsoleOperatorChannel, outcome: Outcome, retry) -> Outcome:
    """Resolve operator suspensions until the step completes."""
    while not isinstance(outcome, Completed):
        if isinstance(outcome, NeedsInput):
            text = await channel.ask_free_text(outcome.question_id, outcome.prompt)
            if not text:
                print("An answer is required.")
                continue
            engine.resume(OperatorInput(OperatorInputKind.ANSWER, outcome.question_id, text))
        elif isinstance(outcome, NeedsIntervention):
            await asyncio.to_thread(input, "> Press Enter once you have finished in the browser: ")
            engine.resume(OperatorInput(OperatorInputKind.INTERVENTION_DONE))
        else:
            raise FormPilotError(f"Unexpected outcome while filling: {outcome}")
        outcome = await retry()
    return outcome


async def _submit(
    engine: ApplicationEngine,
    channel: ConsoleOperatorChannel,
    args: argparse.Namespace,
    metadata: dict[str, object],
) -> int:
    metadata["submitted"] = False
    intent = Intent(description="submit button", text=args.submit_text, role="button")
    outcome = await engine.submit(intent, args.form_id)
    if not isinstance(outcome, NeedsConfirmation):
        print(f"Submit not possible: {outcome}")
        return 1
    confirmed = await channel.ask_confirmation(outcome.summary)
    engine.resume(
        OperatorInput(OperatorInputKind.CONFIRM_SUBMIT if confirmed else OperatorInputKind.DECLINE_SUBMIT),
    )
    if not confirmed:
        print("Submit declined; the form was left filled in.")
        return 0
    result = await engine.submit(intent, args.form_id)
    if isinstance(result, ActionResult):
        metadata["submitted"] = True
        print(f"Submitted ({result.detail or 'ok'}).")
        return 0
    print(f"Submit not performed: {result}")
    return 1


async def _noop() -> Outcome:
    return Completed()


def _describe(outcome: Outcome) -> str:
    return outcome.detail if isinstance(outcome, Completed) else str(outcome)


if __name__ == "__main__":
    raise SystemExit(main())
