from __future__ import annotations


class ShaderGenError(Exception):
    pass
