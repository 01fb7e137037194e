"""ID 生成ユーティリティ。

問題の ID は Firestore のドキュメントパス制約に抵触しない文字だけで構成し、
prefix "q:" を付けた UUID を使用する。
"""

from __future__ import annotations

import hashlib
import uuid


def generate_question_id() -> str:
    """Return a fresh opaque question id."""

    return f"q:{uuid.uuid4().hex}"


def source_url_key(source_url: str) -> str:
    """Normalized uniqueness key for a source URL (trimmed, case-folded)."""

    return source_url.strip().casefold()


def source_url_digest(source_url: str) -> str:
    """Stable document id derived from the normalized URL key.

    URL はスラッシュを含むため Firestore のドキュメント ID に直接使えない。
    """

    return hashlib.sha256(source_url_key(source_url).encode("utf-8")).hexdigest()
