"""
Tests for the logging contract and formatters.

Contextual fields go only through extra={"context": {...}}; logger calls
never take arbitrary kwargs.
"""

import ast
import json
import logging
import sys
import unittest
from pathlib import Path
from typing import Any, Dict, List

from core.logging import (
    ConsoleFormatter,
    ContextAdapter,
    JSONFormatter,
    clear_global_context,
    get_logger,
    set_global_context,
)

PROJECT_ROOT = Path(__file__).resolve().parents[2]
SOURCE_DIRS = ("core", "chains", "sync", "dag", "config")


class TestLoggingContractEnforcement(unittest.TestCase):
    """AST-based scan of every source module."""

    ALLOWED_KWARGS = {"exc_info", "extra", "stack_info", "stacklevel"}

    def _find_logger_violations(self, source_code: str) -> List[Dict[str, Any]]:
        violations = []
        tree = ast.parse(source_code)

        for node in ast.walk(tree):
            if not isinstance(node, ast.Call) or not isinstance(node.func, ast.Attribute):
                continue
            method_name = node.func.attr
            if method_name not in ("debug", "info", "warning", "error", "critical", "exception"):
                continue

            obj = node.func.value
            if isinstance(obj, ast.Name):
                is_logger = "log" in obj.id.lower()
            elif isinstance(obj, ast.Attribute):
                is_logger = "log" in obj.attr.lower()
            else:
                is_logger = False
            if not is_logger:
                continue

            for kw in node.keywords:
                if kw.arg and kw.arg not in self.ALLOWED_KWARGS:
                    violations.append({
                        "line": node.lineno,
                        "method": method_name,
                        "invalid_kwarg": kw.arg,
                    })
        return violations

    def _source_files(self) -> List[Path]:
        files = [PROJECT_ROOT / "run_sync.py"]
        for directory in SOURCE_DIRS:
            files.extend(sorted((PROJECT_ROOT / directory).glob("*.py")))
        return files

    def test_no_invalid_logger_kwargs(self):
        messages = []
        for filepath in self._source_files():
            source = filepath.read_text(encoding="utf-8")
            for v in self._find_logger_violations(source):
                messages.append(
                    f"  {filepath.name}:{v['line']}: logger.{v['method']}(..., {v['invalid_kwarg']}=...)"
                )
        if messages:
            self.fail("Logging violations:\n" + "\n".join(messages))

    def test_detector_flags_kwargs(self):
        source = 'logger.info("x", height=1)\nlogger.info("y", extra={"context": {}})\n'
        violations = self._find_logger_violations(source)
        self.assertEqual(len(violations), 1)
        self.assertEqual(violations[0]["invalid_kwarg"], "height")


class CapturingHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records: List[logging.LogRecord] = []

    def emit(self, record):
        self.records.append(record)


class TestContextAdapter(unittest.TestCase):

    def setUp(self):
        self.handler = CapturingHandler()
        self.base = logging.getLogger(f"test_adapter_{id(self)}")
        self.base.setLevel(logging.DEBUG)
        self.base.handlers = [self.handler]
        self.base.propagate = False

    def test_default_context_merged(self):
        logger = ContextAdapter(self.base, {"endpoint": "n1"})
        logger.info("fetched", extra={"context": {"height": 10}})

        record = self.handler.records[0]
        self.assertEqual(record.context, {"endpoint": "n1", "height": 10})

    def test_call_context_overrides_default(self):
        logger = ContextAdapter(self.base, {"attempt": 1})
        logger.warning("retry", extra={"context": {"attempt": 2}})
        self.assertEqual(self.handler.records[0].context["attempt"], 2)

    def test_get_logger_returns_adapter(self):
        logger = get_logger("sync.test", network="mainnet")
        self.assertIsInstance(logger, ContextAdapter)
        self.assertEqual(logger.extra, {"network": "mainnet"})


class TestFormatters(unittest.TestCase):

    def setUp(self):
        clear_global_context()

    def tearDown(self):
        clear_global_context()

    def _record(self, context=None, exc_info=None) -> logging.LogRecord:
        record = logging.LogRecord(
            name="sync.pipeline",
            level=logging.WARNING,
            pathname=__file__,
            lineno=1,
            msg="Height fetch failed",
            args=(),
            exc_info=exc_info,
        )
        if context is not None:
            record.context = context
        return record

    def test_json_output(self):
        set_global_context(service="blockflow-sync")
        line = JSONFormatter().format(self._record({"chain_from": 0, "height": 7}))
        entry = json.loads(line)

        self.assertEqual(entry["level"], "WARNING")
        self.assertEqual(entry["logger"], "sync.pipeline")
        self.assertEqual(entry["message"], "Height fetch failed")
        self.assertEqual(entry["context"]["height"], 7)
        self.assertEqual(entry["context"]["service"], "blockflow-sync")

    def test_json_without_context(self):
        entry = json.loads(JSONFormatter().format(self._record()))
        self.assertNotIn("context", entry)

    def test_json_includes_exception(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = self._record(exc_info=sys.exc_info())
        entry = json.loads(JSONFormatter().format(record))
        self.assertIn("ValueError: boom", entry["context"]["exception"])

    def test_console_truncates_context(self):
        context = {f"k{i}": i for i in range(6)}
        line = ConsoleFormatter().format(self._record(context))
        self.assertIn("k0=0", line)
        self.assertIn("(+2 more)", line)
        self.assertNotIn("k5=5", line)


if __name__ == "__main__":
    unittest.main()
