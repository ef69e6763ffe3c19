"""Tests for language resolution and command templates."""

import config
from languages import LanguageRegistry, LanguageStrategy, render_template


def test_default_registry_resolves_by_extension():
    registry = LanguageRegistry.from_config(config.LANGUAGES)

    assert registry.resolve("/tmp/a.cpp").name == "c++"
    assert registry.resolve("main.c").name == "c"
    assert registry.resolve("sol.rs").name == "rust"
    assert registry.resolve("gen.py").name == "python"
    assert registry.resolve("gen.js").name == "javascript"


def test_extension_match_is_case_insensitive():
    registry = LanguageRegistry.from_config(config.LANGUAGES)

    assert registry.resolve("SOL.CPP").name == "c++"


def test_unknown_extension_is_unsupported():
    registry = LanguageRegistry.from_config(config.LANGUAGES)

    assert registry.resolve("notes.txt") is None
    assert registry.resolve("Makefile") is None


def test_first_registered_language_wins():
    registry = LanguageRegistry([
        LanguageStrategy("first", ("x",), None, "run-first {exe}"),
        LanguageStrategy("second", ("x", "y"), None, "run-second {exe}"),
    ])

    assert registry.resolve("a.x").name == "first"
    assert registry.resolve("a.y").name == "second"
    assert [lang.name for lang in registry] == ["first", "second"]


def test_flags_expand_to_separate_arguments():
    argv = render_template("g++ {flags} {src} -o {out}", src="a b.cpp", out="a.out",
                           flags="-O2 -std=c++17")

    assert argv == ["g++", "-O2", "-std=c++17", "a b.cpp", "-o", "a.out"]


def test_empty_args_expand_to_nothing():
    argv = render_template("python {args} {exe}", exe="gen.py", args="")

    assert argv == ["python", "gen.py"]


def test_compile_and_run_commands():
    lang = LanguageStrategy.from_config("c++", config.LANGUAGES["c++"])

    assert lang.needs_compile
    cmd = lang.compile_command(src="sol.cpp", out="sol")
    assert cmd[0] == "g++"
    assert cmd[-3:] == ["sol.cpp", "-o", "sol"]
    assert lang.run_command("/cache/abc") == ["/cache/abc"]


def test_cache_key_changes_with_flags():
    base = LanguageStrategy("c++", ("cpp",), "g++ {flags} {src} -o {out}", "{exe}", flags="-O2")
    other = LanguageStrategy("c++", ("cpp",), "g++ {flags} {src} -o {out}", "{exe}", flags="-O0")

    assert base.cache_key() != other.cache_key()
