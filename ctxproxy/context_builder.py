"""Assemble the message list for a provider request.

System prompt (identity, bootstrap files, skills, memory, session info and
running summary) + sanitized history + the new user turn.
"""
import platform
from datetime import datetime
from pathlib import Path

from .config import log
from .memory import MemoryStore
from .messages import ASSISTANT, SYSTEM, TOOL, USER, ContentPart, Message, ToolCall
from .sanitizer import sanitize_history
from .skills import SkillsLoader

BOOTSTRAP_FILES = ["AGENTS.md", "SOUL.md", "USER.md", "IDENTITY.md"]
SECTION_SEPARATOR = "\n\n---\n\n"


def summarize_tools(tool_defs: list[dict]) -> list[str]:
    """One summary line per OpenAI-style tool definition."""
    summaries = []
    for tool in tool_defs or []:
        func = tool.get("function", tool) if isinstance(tool, dict) else None
        if not isinstance(func, dict):
            continue
        name = func.get("name")
        if not name or not isinstance(name, str):
            continue
        desc = func.get("description")
        desc = desc.strip() if isinstance(desc, str) else ""
        summaries.append(f"- `{name}` - {desc}" if desc else f"- `{name}`")
    return summaries


class ContextBuilder:
    def __init__(self, workspace, skills_loader: SkillsLoader | None = None,
                 memory: MemoryStore | None = None,
                 global_config_dir=None, builtin_skills_dir=None):
        self.workspace = Path(workspace)
        if skills_loader is None:
            global_skills = Path(global_config_dir) / "skills" if global_config_dir else None
            skills_loader = SkillsLoader(self.workspace, global_skills, builtin_skills_dir)
        self.skills_loader = skills_loader
        self.memory = memory or MemoryStore(self.workspace)
        self.tool_summaries: list[str] = []

    def set_tool_summaries(self, summaries: list[str]):
        self.tool_summaries = list(summaries)

    def set_tools(self, tool_defs: list[dict]):
        self.tool_summaries = summarize_tools(tool_defs)

    # ── System prompt ──

    def get_identity(self, now: datetime | None = None) -> str:
        now_str = (now or datetime.now()).strftime("%Y-%m-%d %H:%M (%A)")
        workspace_path = self.workspace.resolve()
        runtime = f"{platform.system().lower()} {platform.machine()}, Python {platform.python_version()}"
        tools_section = self.build_tools_section()

        return f"""# ctx-proxy agent

You are a helpful AI assistant.

## Current Time
{now_str}

## Runtime
{runtime}

## Workspace
Your workspace is at: {workspace_path}
- Memory: {workspace_path}/memory/MEMORY.md
- Daily Notes: {workspace_path}/memory/YYYYMM/YYYYMMDD.md
- Skills: {workspace_path}/skills/{{skill-name}}/SKILL.md

{tools_section}

## Important Rules

1. **ALWAYS use tools** - When you need to perform an action (schedule reminders, send messages, execute commands, etc.), you MUST call the appropriate tool. Do NOT just say you'll do it or pretend to do it.

2. **Be helpful and accurate** - When using tools, briefly explain what you're doing.

3. **Memory** - When remembering something, write to {workspace_path}/memory/MEMORY.md"""

    def build_tools_section(self) -> str:
        if not self.tool_summaries:
            return ""
        lines = [
            "## Available Tools",
            "",
            "**CRITICAL**: You MUST use tools to perform actions. Do NOT pretend to execute commands or schedule tasks.",
            "",
            "You have access to the following tools:",
            "",
        ]
        lines.extend(self.tool_summaries)
        return "\n".join(lines) + "\n"

    def load_bootstrap_files(self) -> str:
        result = ""
        for filename in BOOTSTRAP_FILES:
            path = self.workspace / filename
            if not path.is_file():
                continue
            try:
                text = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as e:
                log.warning(f"Failed to read bootstrap file {path}: {e}")
                continue
            result += f"## {filename}\n\n{text}\n\n"
        return result

    def build_system_prompt(self, now: datetime | None = None) -> str:
        parts = [self.get_identity(now)]

        bootstrap = self.load_bootstrap_files()
        if bootstrap:
            parts.append(bootstrap)

        skills_summary = self.skills_loader.build_skills_summary()
        if skills_summary:
            parts.append(
                "# Skills\n\n"
                "The following skills extend your capabilities. "
                "To use a skill, read its SKILL.md file using the read_file tool.\n\n"
                + skills_summary
            )

        memory_context = self.memory.get_memory_context()
        if memory_context:
            parts.append("# Memory\n\n" + memory_context)

        return SECTION_SEPARATOR.join(parts)

    # ── Messages ──

    def build_messages(self, history: list[Message], summary: str = "", current_message: str = "",
                       media: list[str] | None = None, channel: str = "", chat_id: str = "",
                       now: datetime | None = None) -> list[Message]:
        system_prompt = self.build_system_prompt(now)

        if channel and chat_id:
            system_prompt += f"\n\n## Current Session\nChannel: {channel}\nChat ID: {chat_id}"

        log.debug(f"System prompt built: {len(system_prompt)} chars, "
                  f"{system_prompt.count(chr(10)) + 1} lines, "
                  f"{system_prompt.count(SECTION_SEPARATOR) + 1} sections")
        preview = system_prompt if len(system_prompt) <= 500 else system_prompt[:500] + "... (truncated)"
        log.debug(f"System prompt preview: {preview}")

        if summary:
            system_prompt += "\n\n## Summary of Previous Conversation\n\n" + summary

        messages = [Message(role=SYSTEM, content=system_prompt)]
        messages.extend(sanitize_history(history))

        user_msg = Message(role=USER, content=current_message)
        if media:
            user_msg.content_parts = [ContentPart(type="text", text=current_message)]
            user_msg.content_parts.extend(ContentPart(type="image_url", image_url=url) for url in media)
        messages.append(user_msg)
        return messages

    def add_tool_result(self, messages: list[Message], tool_call_id: str, tool_name: str,
                        result: str) -> list[Message]:
        log.debug(f"Tool result for {tool_name} ({tool_call_id}): {len(result)} chars")
        return messages + [Message(role=TOOL, content=result, tool_call_id=tool_call_id)]

    def add_assistant_message(self, messages: list[Message], content: str,
                              tool_calls: list[ToolCall] | None = None) -> list[Message]:
        return messages + [Message(role=ASSISTANT, content=content, tool_calls=list(tool_calls or []))]

    # ── Skills ──

    def load_skills(self) -> str:
        names = [s.name for s in self.skills_loader.list_skills()]
        if not names:
            return ""
        content = self.skills_loader.load_skills_for_context(names)
        if not content:
            return ""
        return "# Skill Definitions\n\n" + content

    def get_skills_info(self) -> dict:
        names = [s.name for s in self.skills_loader.list_skills()]
        return {"total": len(names), "available": len(names), "names": names}
