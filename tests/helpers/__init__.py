from .fakes import FakeContext, FakePage, FakePool, ScriptedExecutor, html_page
from .metric_delta import metric_delta, sample_value

__all__ = [
    "FakeContext",
    "FakePage",
    "FakePool",
    "ScriptedExecutor",
    "html_page",
    "metric_delta",
    "sample_value",
]
