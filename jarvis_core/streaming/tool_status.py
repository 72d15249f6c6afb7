"""工具名到运行状态提示语的映射，工具执行期间在 UI 上显示。"""

from typing import List, Literal, Tuple

MatchKind = Literal["exact", "prefix", "contains"]

THINKING = "Thinking…"
WORKING = "Working…"

# 自上而下匹配，命中第一条即返回；模式均为小写
TOOL_STATUS_RULES: List[Tuple[MatchKind, str, str]] = [
    ("exact", "bash", "Running a command…"),
    ("exact", "read", "Reading a file…"),
    ("exact", "write", "Writing a file…"),
    ("exact", "edit", "Editing a file…"),
    ("exact", "grep", "Searching files…"),
    ("exact", "glob", "Looking for files…"),
    ("exact", "webfetch", "Reading a web page…"),
    ("exact", "websearch", "Searching the web…"),
    ("exact", "memory_save", "Saving to memory…"),
    ("prefix", "mcp__gmail", "Checking email…"),
    ("prefix", "mcp__outlook", "Checking email…"),
    ("prefix", "mcp__google-calendar", "Checking your calendar…"),
    ("prefix", "mcp__calendar", "Checking your calendar…"),
    ("prefix", "mcp__github", "Checking GitHub…"),
    ("prefix", "mcp__memory", "Searching memory…"),
    ("prefix", "gmail_", "Checking email…"),
    ("prefix", "outlook_", "Checking email…"),
    ("prefix", "calendar_", "Checking your calendar…"),
    ("prefix", "github_", "Checking GitHub…"),
    ("prefix", "memory_", "Searching memory…"),
    ("contains", "search", "Searching the web…"),
    ("contains", "fetch", "Reading a web page…"),
]


def friendly_tool_status(tool_name: str) -> str:
    name = (tool_name or "").strip().lower()
    if not name:
        return WORKING
    for kind, pattern, phrase in TOOL_STATUS_RULES:
        if kind == "exact" and name == pattern:
            return phrase
        if kind == "prefix" and name.startswith(pattern):
            return phrase
        if kind == "contains" and pattern in name:
            return phrase
    return WORKING
