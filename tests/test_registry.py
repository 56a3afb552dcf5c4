# tests/test_registry.py
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel

from dte.execution.registry import detect_payload_type


class Invoice(BaseModel):
    number: str


@dataclass
class Resize:
    width: int


def test_detects_user_classes():
    def handler(params: Invoice, ctx):
        return None

    def dc_handler(params: Resize, ctx):
        return None

    assert detect_payload_type(handler) is Invoice
    assert detect_payload_type(dc_handler) is Resize


def test_ignores_builtins_and_missing_annotations():
    def untyped(params, ctx):
        return None

    def dict_typed(params: dict, ctx):
        return None

    def any_typed(params: Any, ctx):
        return None

    assert detect_payload_type(untyped) is None
    assert detect_payload_type(dict_typed) is None
    assert detect_payload_type(any_typed) is None
    assert detect_payload_type(lambda p, c: None) is None
