from __future__ import annotations

from typing import Any

from donfig import Config

config = Config(
    "grove",
    defaults=[
        {
            "json_indent": 4,
            "node": {"version": 1},
            "npy": {"strict_alignment": False},
        }
    ],
)


def parse_node_version(data: Any) -> int:
    if isinstance(data, bool) or not isinstance(data, int) or data < 1:
        msg = f"Expected a positive integer node version, got {data!r} instead."
        raise ValueError(msg)
    return data
