#!/usr/bin/env python3
"""Tests for configuration loading and the language tables.

Run: python3 test_config.py
"""

import asyncio
import json
import os
import sys
import tempfile
from pathlib import Path
from unittest.mock import patch

sys.path.insert(0, str(Path(__file__).parent))

import config
from config import DEFAULTS, get_api_key, load_config, save_config
from languages import (
    DEFAULT_VOICE,
    all_language_accents,
    build_system_instruction,
    language_of,
    load_document,
    parse_language_accent,
    voice_for,
)

PASSED = 0
FAILED = 0
ERRORS = []


def test(name):
    def decorator(fn):
        fn._test_name = name
        return fn
    return decorator


def run_test(fn):
    global PASSED, FAILED
    name = getattr(fn, '_test_name', fn.__name__)
    try:
        if asyncio.iscoroutinefunction(fn):
            asyncio.run(fn())
        else:
            fn()
        PASSED += 1
        print(f"  PASS: {name}")
    except AssertionError as e:
        FAILED += 1
        ERRORS.append((name, str(e)))
        print(f"  FAIL: {name} -- {e}")
    except Exception as e:
        FAILED += 1
        ERRORS.append((name, f"{type(e).__name__}: {e}"))
        print(f"  ERROR: {name} -- {type(e).__name__}: {e}")


# ======================================================================
# Test Group 1: Config file
# ======================================================================

@test("Missing config file yields defaults")
def test_load_missing():
    cfg = load_config(Path("/nonexistent/config.json"))
    assert cfg == DEFAULTS
    assert cfg is not DEFAULTS


@test("Config file values override defaults")
def test_load_merge():
    with tempfile.TemporaryDirectory() as tmp:
        path = Path(tmp) / "config.json"
        path.write_text(json.dumps({"language_accent": "malay-my", "processing_debounce": 2.0}))
        cfg = load_config(path)
        assert cfg["language_accent"] == "malay-my"
        assert cfg["processing_debounce"] == 2.0
        assert cfg["output_sample_rate"] == 24000


@test("Corrupt config file falls back to defaults")
def test_load_corrupt():
    with tempfile.TemporaryDirectory() as tmp:
        path = Path(tmp) / "config.json"
        path.write_text("{not json")
        assert load_config(path) == DEFAULTS


@test("save_config round-trips through load_config")
def test_save_config():
    with tempfile.TemporaryDirectory() as tmp:
        path = Path(tmp) / "config.json"
        save_config({"translate_to": "french-fr"}, path)
        assert load_config(path)["translate_to"] == "french-fr"


# ======================================================================
# Test Group 2: API key lookup
# ======================================================================

@test("API key comes from the first set environment variable")
def test_api_key_env():
    env = {"GOOGLE_API_KEY": "google", "API_KEY": "generic"}
    with patch.dict(os.environ, env, clear=True):
        assert get_api_key() == "google"


@test("API key falls back to the key file")
def test_api_key_file():
    with tempfile.TemporaryDirectory() as tmp:
        key_file = Path(tmp) / "api_key"
        key_file.write_text("from-file\n")
        with patch.dict(os.environ, {}, clear=True), \
                patch.object(config, "API_KEY_FILES", (Path(tmp) / "missing", key_file)):
            assert get_api_key() == "from-file"


@test("No key anywhere returns None")
def test_api_key_none():
    with patch.dict(os.environ, {}, clear=True), \
            patch.object(config, "API_KEY_FILES", ()):
        assert get_api_key() is None


# ======================================================================
# Test Group 3: Languages and voices
# ======================================================================

@test("Language-accent codes parse and validate")
def test_parse_language_accent():
    assert parse_language_accent("spanish-mx") == ("spanish", "mx")
    for bad in ("spanish-uk", "german-de", "english", ""):
        try:
            parse_language_accent(bad)
        except ValueError:
            continue
        raise AssertionError(f"{bad!r} should be rejected")


@test("Each accent maps to its voice, unknown codes to the default")
def test_voice_for():
    assert voice_for("english-us") == "Zephyr"
    assert voice_for("english-uk") == "Puck"
    assert voice_for("french-fr") == "Fenrir"
    assert voice_for("unknown-xx") == DEFAULT_VOICE


@test("language_of keeps only the language part")
def test_language_of():
    assert language_of("english-uk") == "english"
    assert language_of("malay") == "malay"


@test("all_language_accents lists every supported code")
def test_all_language_accents():
    codes = [code for code, _ in all_language_accents()]
    assert len(codes) == 7
    assert "malay-my" in codes
    assert dict(all_language_accents())["french-ca"] == "French (Canadian)"


@test("System instruction combines base, accent and document")
def test_build_system_instruction():
    plain = build_system_instruction("english-us")
    assert "customer support agent" in plain
    assert "document:" not in plain

    styled = build_system_instruction("spanish-mx", "Claim 42: approved")
    assert "Mexico" in styled
    assert "Claim 42: approved" in styled
    assert "Here is the customer's document:" in styled


@test("load_document reads a file and tolerates a missing one")
def test_load_document():
    with tempfile.TemporaryDirectory() as tmp:
        path = Path(tmp) / "doc.txt"
        path.write_text("  Policy: 123  \n")
        assert load_document(str(path)) == "Policy: 123"
    assert load_document("") == ""
    assert load_document("/nonexistent/doc.txt") == ""


# ======================================================================
# Run all tests
# ======================================================================

if __name__ == "__main__":
    print("=" * 60)
    print("Config & Language Tests")
    print("=" * 60)

    tests = [
        obj for name, obj in sorted(globals().items())
        if callable(obj) and hasattr(obj, '_test_name')
    ]

    print(f"\nRunning {len(tests)} tests...\n")

    for fn in tests:
        run_test(fn)

    print(f"\n{'=' * 60}")
    print(f"Results: {PASSED} passed, {FAILED} failed out of {PASSED + FAILED}")

    if ERRORS:
        print(f"\nFailures:")
        for name, err in ERRORS:
            print(f"  - {name}: {err}")

    print("=" * 60)
    sys.exit(0 if FAILED == 0 else 1)
