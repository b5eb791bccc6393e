from __future__ import annotations

import threading
import unittest

from multer.exceptions import LIMIT_UNEXPECTED_FILE, InvalidOptionsError, LimitError
from multer.limits import DEFAULT_LIMITS, FieldSpec, LimitEnforcer, make_limits


class TestFieldSpec(unittest.TestCase):
    def test_defaults(self) -> None:
        f = FieldSpec("avatar")
        self.assertEqual(f.name, "avatar")
        self.assertIsNone(f.max_count)

    def test_from_value(self) -> None:
        self.assertEqual(FieldSpec.from_value("a"), FieldSpec("a"))
        self.assertEqual(FieldSpec.from_value({"name": "a", "max_count": 3}), FieldSpec("a", 3))

        spec = FieldSpec("b", 1)
        self.assertIs(FieldSpec.from_value(spec), spec)

    def test_invalid_max_count(self) -> None:
        for bad in (0, -1, 1.5, "2", True):
            with self.assertRaises(InvalidOptionsError):
                FieldSpec("a", bad)  # type: ignore[arg-type]

    def test_invalid_name(self) -> None:
        with self.assertRaises(InvalidOptionsError):
            FieldSpec("")
        with self.assertRaises(InvalidOptionsError):
            FieldSpec.from_value({"max_count": 1})
        with self.assertRaises(InvalidOptionsError):
            FieldSpec.from_value(3)  # type: ignore[arg-type]

    def test_invalid_options_is_type_error(self) -> None:
        with self.assertRaises(TypeError):
            FieldSpec("a", 0)

    def test_repr(self) -> None:
        self.assertEqual(repr(FieldSpec("a", 2)), "FieldSpec(name='a', max_count=2)")


class TestMakeLimits(unittest.TestCase):
    def test_defaults(self) -> None:
        limits = make_limits()
        self.assertEqual(limits, DEFAULT_LIMITS)
        self.assertIsNot(limits, DEFAULT_LIMITS)

    def test_override(self) -> None:
        limits = make_limits({"file_size": 10, "files": 0})
        self.assertEqual(limits["file_size"], 10)
        self.assertEqual(limits["files"], 0)
        self.assertEqual(limits["field_size"], DEFAULT_LIMITS["field_size"])

    def test_none_keeps_default(self) -> None:
        self.assertEqual(make_limits({"fields": None})["fields"], float("inf"))

    def test_unknown_key(self) -> None:
        with self.assertRaises(InvalidOptionsError):
            make_limits({"fileSize": 10})

    def test_bad_values(self) -> None:
        for bad in (-1, "10", True):
            with self.assertRaises(InvalidOptionsError):
                make_limits({"file_size": bad})

    def test_not_a_mapping(self) -> None:
        with self.assertRaises(InvalidOptionsError):
            make_limits([("file_size", 1)])  # type: ignore[arg-type]


class TestLimitEnforcer(unittest.TestCase):
    def assert_rejected(self, enforcer: LimitEnforcer, name: str) -> None:
        with self.assertRaises(LimitError) as ctx:
            enforcer.admit(name)
        self.assertEqual(ctx.exception.code, LIMIT_UNEXPECTED_FILE)
        self.assertEqual(ctx.exception.field, name)

    def test_budget_per_field(self) -> None:
        enforcer = LimitEnforcer([FieldSpec("a", 2), FieldSpec("b", 1)])

        enforcer.admit("a")
        enforcer.admit("a")
        self.assert_rejected(enforcer, "a")

        # Running out for one field leaves the others alone.
        enforcer.admit("b")
        self.assert_rejected(enforcer, "b")

    def test_undeclared_field(self) -> None:
        enforcer = LimitEnforcer([FieldSpec("a")])
        self.assert_rejected(enforcer, "b")
        self.assertEqual(enforcer.remaining("b"), 0)

    def test_unbounded_field(self) -> None:
        enforcer = LimitEnforcer([FieldSpec("a")])
        for _ in range(100):
            enforcer.admit("a")
        self.assertEqual(enforcer.remaining("a"), float("inf"))

    def test_no_declarations_rejects_everything(self) -> None:
        enforcer = LimitEnforcer([])
        self.assert_rejected(enforcer, "anything")

    def test_any_field(self) -> None:
        enforcer = LimitEnforcer(None)
        for name in ("a", "b", "c", "a"):
            enforcer.admit(name)
        self.assertEqual(enforcer.remaining("zzz"), float("inf"))

    def test_remaining(self) -> None:
        enforcer = LimitEnforcer([FieldSpec("a", 3)])
        enforcer.admit("a")
        self.assertEqual(enforcer.remaining("a"), 2)

    def test_last_slot_is_taken_once(self) -> None:
        enforcer = LimitEnforcer([FieldSpec("a", 1)])
        admitted = []
        rejected = []
        barrier = threading.Barrier(8)

        def worker() -> None:
            barrier.wait()
            try:
                enforcer.admit("a")
            except LimitError:
                rejected.append(1)
            else:
                admitted.append(1)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(len(admitted), 1)
        self.assertEqual(len(rejected), 7)
