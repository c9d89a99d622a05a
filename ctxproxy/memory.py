"""Workspace memory: memory/MEMORY.md plus daily notes at memory/YYYYMM/YYYYMMDD.md"""
from datetime import date, datetime, timedelta
from pathlib import Path


class MemoryStore:
    def __init__(self, workspace):
        self.memory_dir = Path(workspace) / "memory"
        self.memory_file = self.memory_dir / "MEMORY.md"

    def _daily_path(self, day: date) -> Path:
        return self.memory_dir / day.strftime("%Y%m") / f"{day.strftime('%Y%m%d')}.md"

    def read_long_term(self) -> str:
        if self.memory_file.exists():
            return self.memory_file.read_text()
        return ""

    def write_long_term(self, content: str):
        self.memory_dir.mkdir(parents=True, exist_ok=True)
        self.memory_file.write_text(content)

    def read_today(self, today: date | None = None) -> str:
        path = self._daily_path(today or datetime.now().date())
        if path.exists():
            return path.read_text()
        return ""

    def append_today(self, content: str, today: date | None = None):
        """Append a note to today's file, creating it with a date header."""
        day = today or datetime.now().date()
        path = self._daily_path(day)
        path.parent.mkdir(parents=True, exist_ok=True)
        if path.exists():
            existing = path.read_text()
            path.write_text(existing.rstrip("\n") + "\n\n" + content + "\n")
        else:
            path.write_text(f"# {day.isoformat()}\n\n{content}\n")

    def get_recent_daily_notes(self, days: int = 3, today: date | None = None) -> str:
        """Notes from the last ``days`` days, newest first."""
        day = today or datetime.now().date()
        notes = []
        for offset in range(days):
            path = self._daily_path(day - timedelta(days=offset))
            if path.exists():
                text = path.read_text().strip()
                if text:
                    notes.append(text)
        return "\n\n---\n\n".join(notes)

    def get_memory_context(self, today: date | None = None) -> str:
        parts = []
        long_term = self.read_long_term().strip()
        if long_term:
            parts.append("## Long-term Memory\n\n" + long_term)
        recent = self.get_recent_daily_notes(today=today)
        if recent:
            parts.append("## Recent Daily Notes\n\n" + recent)
        return "\n\n".join(parts)
