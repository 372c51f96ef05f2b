"""Wires a ModeController from configuration for one project directory."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path

from companion.config.paths import get_project_dir
from companion.config.schema import Config
from companion.core.llm.litellm_provider import LiteLLMProvider
from companion.core.llm.provider import LLMProvider
from companion.core.llm.transport import RetryingTransport
from companion.core.tokens import TokenBudget, get_estimator
from companion.mcp.client import ExternalToolClient
from companion.session.compaction import create_summarizer
from companion.session.context import ContextManager
from companion.session.controller import Confirmer, ModeController, ProjectIndex
from companion.session.memory import MEMORY_FILENAME, MemoryEditor, ProjectMemory
from companion.session.models import Mode, Session
from companion.session.storage import YamlSessionStore
from companion.terminal.protocol import TerminalExecutor
from companion.terminal.subprocess_executor import SubprocessTerminalExecutor
from companion.tools.builtins import create_builtin_tools
from companion.tools.executor import ToolExecutor
from companion.tools.index import WorkspaceIndex
from companion.tools.registry import ToolRegistry
from companion.tools.safety import SafetyPolicy
from companion.tools.workspace import Workspace


def create_controller(
    project_root: str | Path,
    config: Config | None = None,
    *,
    provider: LLMProvider | None = None,
    confirmer: Confirmer | None = None,
    memory_editor: MemoryEditor | None = None,
    project_index: ProjectIndex | None = None,
    terminal: TerminalExecutor | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    external_tools: bool = True,
) -> ModeController:
    """Build every collaborator for ``project_root``.

    Call ``await controller.start()`` afterwards to load memory, index the
    project and connect external tool servers.
    """
    config = config or Config()
    root = Path(project_root).resolve()
    project_dir = get_project_dir(root)

    safety = SafetyPolicy(shell_rules=config.tools.shell_rules, mcp_rules=config.mcp.rules)
    workspace = Workspace(
        root,
        io_timeout=config.tools.io_timeout,
        ignore_patterns=config.tools.ignore_patterns,
    )
    registry = ToolRegistry()
    registry.register_all(
        create_builtin_tools(
            workspace,
            terminal or SubprocessTerminalExecutor(str(root)),
            safety,
            command_timeout=config.tools.command_timeout,
            search_max_results=config.tools.search_max_results,
        )
    )
    executor = ToolExecutor(registry, output_limit=config.tools.output_limit)

    transport = RetryingTransport(
        provider or LiteLLMProvider.from_config(config.llm),
        config.retry,
        sleep=sleep,
        max_tokens=config.llm.max_tokens,
    )

    budget = TokenBudget(
        capacity=config.context.capacity,
        threshold=config.context.compaction_threshold,
        estimator=get_estimator(config.context.token_estimator),
    )
    summarizer_options = {}
    if config.context.summarizer == "model":
        summarizer_options["max_tokens"] = config.context.summary_max_tokens
    summarizer = create_summarizer(config.context.summarizer, transport, **summarizer_options)
    context = ContextManager(Session(mode=Mode(config.agent.default_mode)), budget, summarizer)

    if project_index is None and config.agent.index_context_tokens > 0:
        project_index = WorkspaceIndex(
            workspace,
            estimator=budget.estimator,
            max_files=config.agent.index_max_files,
        )

    external_client = None
    if external_tools:
        manifest = Path(config.mcp.manifest)
        external_client = ExternalToolClient(
            manifest if manifest.is_absolute() else root / manifest,
            safety,
            startup_timeout=config.mcp.startup_timeout,
            call_timeout=config.mcp.call_timeout,
        )

    return ModeController(
        transport=transport,
        executor=executor,
        context=context,
        config=config.agent,
        store=YamlSessionStore(project_dir / "sessions"),
        memory=ProjectMemory(project_dir / MEMORY_FILENAME),
        confirmer=confirmer,
        memory_editor=memory_editor,
        project_index=project_index,
        external_client=external_client,
    )
