"""Skill discovery: <dir>/<name>/SKILL.md from workspace, global and builtin dirs"""
from dataclasses import dataclass
from pathlib import Path

from .config import log

SKILL_FILE = "SKILL.md"


@dataclass
class SkillInfo:
    name: str
    path: Path
    source: str
    description: str = ""


def _split_front_matter(text: str) -> tuple[dict, str]:
    """Split a leading '---' block of key: value lines from the body."""
    lines = text.splitlines()
    if not lines or lines[0].strip() != "---":
        return {}, text
    meta = {}
    for n, line in enumerate(lines[1:], start=1):
        if line.strip() == "---":
            return meta, "\n".join(lines[n + 1:]).lstrip("\n")
        if ":" in line:
            key, value = line.split(":", 1)
            meta[key.strip()] = value.strip().strip("'\"")
    # Unterminated block is treated as plain body
    return {}, text


def _describe(meta: dict, body: str) -> str:
    if meta.get("description"):
        return meta["description"]
    for line in body.splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            return line
    return ""


class SkillsLoader:
    """Finds skills by name; workspace skills shadow global ones, which shadow builtins."""

    def __init__(self, workspace, global_dir=None, builtin_dir=None):
        self.workspace = Path(workspace)
        self.sources = [("workspace", self.workspace / "skills")]
        if global_dir:
            self.sources.append(("global", Path(global_dir)))
        if builtin_dir:
            self.sources.append(("builtin", Path(builtin_dir)))

    def list_skills(self) -> list[SkillInfo]:
        seen = set()
        skills = []
        for source, root in self.sources:
            if not root.is_dir():
                continue
            for skill_dir in sorted(p for p in root.iterdir() if p.is_dir()):
                skill_file = skill_dir / SKILL_FILE
                if not skill_file.is_file():
                    continue
                try:
                    meta, body = _split_front_matter(skill_file.read_text(encoding="utf-8"))
                except (OSError, UnicodeDecodeError) as e:
                    log.warning(f"Failed to read skill {skill_file}: {e}")
                    continue
                name = meta.get("name") or skill_dir.name
                if name in seen:
                    continue
                seen.add(name)
                skills.append(SkillInfo(
                    name=name,
                    path=skill_file,
                    source=source,
                    description=_describe(meta, body),
                ))
        return skills

    def load_skill(self, name: str) -> str | None:
        """Skill body with front matter stripped, or None if unknown."""
        for skill in self.list_skills():
            if skill.name == name:
                return _split_front_matter(skill.path.read_text())[1]
        return None

    def load_skills_for_context(self, names: list[str]) -> str:
        parts = []
        for name in names:
            body = self.load_skill(name)
            if body:
                parts.append(f"### Skill: {name}\n\n{body}")
        return "\n\n---\n\n".join(parts)

    def build_skills_summary(self) -> str:
        lines = []
        for s in self.list_skills():
            desc = f": {s.description}" if s.description else ""
            lines.append(f"- **{s.name}**{desc} (`{s.path}`)")
        return "\n".join(lines)
