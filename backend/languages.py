import os
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

_LIST_PLACEHOLDERS = ("flags", "args")


def render_template(template: str, **values) -> List[str]:
    """Split a command template into argv and fill in the placeholders.

    `{flags}` and `{args}` standing alone expand to zero or more arguments,
    every other placeholder is substituted inside its own argument, so paths
    with spaces stay a single argument.
    """
    argv = []
    for token in shlex.split(template, posix=os.name != "nt"):
        name = token[1:-1] if token.startswith("{") and token.endswith("}") else None
        if name in _LIST_PLACEHOLDERS:
            argv.extend(shlex.split(values.get(name) or "", posix=os.name != "nt"))
            continue
        for key, value in values.items():
            token = token.replace("{" + key + "}", str(value or ""))
        argv.append(token)
    return argv


@dataclass(frozen=True)
class LanguageStrategy:
    name: str
    extensions: Tuple[str, ...]
    compile_template: Optional[str]
    run_template: str
    flags: str = ""
    args: str = ""
    suffix: str = ""

    @property
    def needs_compile(self) -> bool:
        return bool(self.compile_template)

    def compile_command(self, src: str, out: str) -> List[str]:
        return render_template(self.compile_template, src=src, out=out, flags=self.flags)

    def run_command(self, exe: str) -> List[str]:
        return render_template(self.run_template, exe=exe, args=self.args)

    def cache_key(self) -> str:
        return f"{self.name}\0{self.compile_template or ''}\0{self.flags}"

    @classmethod
    def from_config(cls, name: str, entry: dict) -> "LanguageStrategy":
        return cls(
            name=name,
            extensions=tuple(ext.lower().lstrip(".") for ext in entry["extensions"]),
            compile_template=entry.get("compile"),
            run_template=entry["run"],
            flags=entry.get("flags", ""),
            args=entry.get("args", ""),
            suffix=entry.get("suffix", ""),
        )


class LanguageRegistry:
    """Ordered language lookup by file extension; earlier entries win."""

    def __init__(self, strategies: Iterable[LanguageStrategy] = ()):
        self._strategies: List[LanguageStrategy] = list(strategies)

    @classmethod
    def from_config(cls, languages: Dict[str, dict]) -> "LanguageRegistry":
        return cls(LanguageStrategy.from_config(name, entry) for name, entry in languages.items())

    def register(self, strategy: LanguageStrategy):
        self._strategies.append(strategy)

    def resolve(self, file_path: str) -> Optional[LanguageStrategy]:
        ext = Path(file_path).suffix.lower().lstrip(".")
        if not ext:
            return None
        for strategy in self._strategies:
            if ext in strategy.extensions:
                return strategy
        return None

    def get(self, name: str) -> Optional[LanguageStrategy]:
        for strategy in self._strategies:
            if strategy.name == name:
                return strategy
        return None

    def __iter__(self) -> Iterator[LanguageStrategy]:
        return iter(self._strategies)

    def __len__(self):
        return len(self._strategies)
