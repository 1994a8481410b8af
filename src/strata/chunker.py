# Strata – Semantic code index for workspace questions
# Copyright (c) 2026 4rce.com Digital Technologies GmbH.
# Use of this software is governed by the Business Source License 1.1. See LICENSE.md.

"""
File text -> overlapping fixed-size line windows -> CodeChunks.

A chunk is identified by (file_uri, start_line0, end_line0); line numbers
are 0-based and end_line0 is inclusive. Each chunk maps 1:1 to a Document,
the provider-agnostic form stored in the similarity store and on disk.
"""
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import unquote, urlparse
from urllib.request import url2pathname


def path_to_uri(path: str | Path) -> str:
    return Path(path).absolute().as_uri()


def uri_to_path(uri: str) -> str:
    parsed = urlparse(uri)
    if parsed.scheme != "file":
        return unquote(parsed.path)
    return url2pathname(parsed.path)


@dataclass(frozen=True)
class CodeChunk:
    file_uri: str
    start_line0: int
    end_line0: int
    text: str

    @property
    def key(self) -> tuple[str, int, int]:
        return (self.file_uri, self.start_line0, self.end_line0)

    @property
    def file_path(self) -> str:
        return uri_to_path(self.file_uri)


@dataclass
class Document:
    page_content: str
    metadata: dict = field(default_factory=dict)

    @property
    def id(self) -> str:
        m = self.metadata
        return f"{m['uri']}#{m['startLine0']}-{m['endLine0']}"

    def to_dict(self) -> dict:
        return {"pageContent": self.page_content, "metadata": dict(self.metadata)}

    @classmethod
    def from_dict(cls, data: dict) -> "Document":
        meta = data["metadata"]
        return cls(
            page_content=str(data["pageContent"]),
            metadata={
                "uri": str(meta["uri"]),
                "startLine0": int(meta["startLine0"]),
                "endLine0": int(meta["endLine0"]),
            },
        )


def chunk_to_document(chunk: CodeChunk) -> Document:
    return Document(
        page_content=chunk.text,
        metadata={
            "uri": chunk.file_uri,
            "startLine0": chunk.start_line0,
            "endLine0": chunk.end_line0,
        },
    )


def document_to_chunk(doc: Document) -> CodeChunk:
    meta = doc.metadata
    return CodeChunk(
        file_uri=str(meta["uri"]),
        start_line0=int(meta["startLine0"]),
        end_line0=int(meta["endLine0"]),
        text=doc.page_content,
    )


def chunk_by_lines(
    file_uri: str, text: str, chunk_lines: int, overlap_lines: int,
) -> list[CodeChunk]:
    """Split text into windows of chunk_lines lines advancing by
    max(1, chunk_lines - overlap_lines). Whitespace-only windows are
    skipped; the last window is clipped at end of file."""
    if not text:
        return []
    lines = text.replace("\r\n", "\n").split("\n")
    step = max(1, chunk_lines - overlap_lines)

    chunks: list[CodeChunk] = []
    for start in range(0, len(lines), step):
        end = min(len(lines), start + chunk_lines)
        chunk_text = "\n".join(lines[start:end])

        if chunk_text.strip():
            chunks.append(CodeChunk(
                file_uri=file_uri,
                start_line0=start,
                end_line0=max(start, end - 1),
                text=chunk_text,
            ))

        if end == len(lines):
            break

    return chunks
