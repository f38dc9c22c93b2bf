from __future__ import annotations

__title__ = "a2g-cli"
__version__ = "0.1.0"
__description__ = "Terminal client for OpenAI-compatible chat endpoints with local tool execution."
