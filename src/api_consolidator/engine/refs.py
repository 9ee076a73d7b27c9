"""Cross-document ``$ref`` resolution ("bundling").

Supported reference forms:

- ``#/components/schemas/User``: a fragment of the main document, or of
  the document being walked with ``local_ref_scope="current"``.
- ``./common.yaml#/components/schemas/User`` or ``../shared/common.yaml``:
  a fragment (or the whole) of a sibling document.

Anything else (URLs, bare file names) is left untouched. A reference that
cannot be found is logged and kept as-is, so the output degrades to an
unresolved but otherwise valid document. Reference cycles raise
:class:`CyclicReferenceError`.
"""

from pathlib import Path, PurePosixPath
from typing import Any
from urllib.parse import unquote

import structlog

from api_consolidator.config import MergePolicy
from api_consolidator.errors import CyclicReferenceError, ReferenceDepthError
from api_consolidator.parser.swagger import load_raw_document

logger = structlog.get_logger(__name__)

RELATIVE_PREFIXES = ("./", "../")

_UNRESOLVED = object()


def resolve(
    main_document: dict,
    main_id: str,
    siblings: dict[str, dict] | None = None,
    policy: MergePolicy | None = None,
) -> dict:
    """Return a copy of ``main_document`` with every resolvable ``$ref`` inlined.

    ``siblings`` maps document ids (file names relative to the main
    document) to their parsed content. Inputs are never mutated.
    """
    documents = {**(siblings or {}), main_id: main_document}
    resolver = _Resolver(documents, main_id, policy or MergePolicy())
    return resolver.walk(main_document, main_id, ())


def bundle(main_path: Path, sibling_paths: list[Path], policy: MergePolicy | None = None) -> dict:
    """Read ``main_path`` and its siblings from disk and resolve references."""
    base_dir = main_path.parent
    siblings = {_document_id(p, base_dir): load_raw_document(p) for p in sibling_paths}
    return resolve(load_raw_document(main_path), _document_id(main_path, base_dir), siblings, policy)


def json_pointer_get(document: Any, pointer: str) -> Any:
    """Navigate a slash-delimited fragment. Raises KeyError when a step is missing."""
    node = document
    for token in pointer.split("/"):
        if not token:
            continue
        token = unquote(token).replace("~1", "/").replace("~0", "~")
        if isinstance(node, dict) and token in node:
            node = node[token]
        elif isinstance(node, list) and token.isdigit() and int(token) < len(node):
            node = node[int(token)]
        else:
            raise KeyError(pointer)
    return node


def find_unresolved_refs(node: Any) -> list[str]:
    """Collect every ``$ref`` string still present in ``node``."""
    found: list[str] = []
    if isinstance(node, dict):
        ref = node.get("$ref")
        if isinstance(ref, str):
            found.append(ref)
        for value in node.values():
            found.extend(find_unresolved_refs(value))
    elif isinstance(node, list):
        for item in node:
            found.extend(find_unresolved_refs(item))
    return found


def _document_id(path: Path, base_dir: Path) -> str:
    try:
        return path.resolve().relative_to(base_dir.resolve()).as_posix()
    except ValueError:
        return path.name


class _Resolver:
    def __init__(self, documents: dict[str, dict], main_id: str, policy: MergePolicy):
        self.documents = documents
        self.main_id = main_id
        self.policy = policy

    def walk(self, node: Any, doc_id: str, chain: tuple[tuple[str, str], ...]) -> Any:
        if isinstance(node, list):
            return [self.walk(item, doc_id, chain) for item in node]
        if not isinstance(node, dict):
            return node

        ref = node.get("$ref")
        if isinstance(ref, str):
            resolved = self._resolve_ref(ref, doc_id, chain)
            if resolved is not _UNRESOLVED:
                return resolved

        return {key: self.walk(value, doc_id, chain) for key, value in node.items()}

    def _resolve_ref(self, ref: str, doc_id: str, chain: tuple[tuple[str, str], ...]) -> Any:
        if ref.startswith(RELATIVE_PREFIXES):
            file_part, _, fragment = ref.partition("#")
            target_id = self._sibling_id(file_part)
            if target_id is None:
                logger.warning("sibling_document_not_found", ref=ref, document=doc_id)
                return _UNRESOLVED
        elif ref.startswith("#/"):
            target_id = self.main_id if self.policy.local_ref_scope == "main" else doc_id
            fragment = ref[1:]
        else:
            return _UNRESOLVED

        try:
            target = json_pointer_get(self.documents[target_id], fragment)
        except KeyError:
            logger.warning("reference_target_not_found", ref=ref, document=target_id)
            return _UNRESOLVED

        frame = (target_id, fragment)
        if frame in chain:
            if self.policy.keep_cyclic_refs:
                logger.warning("cyclic_reference_kept", ref=ref, document=doc_id)
                return _UNRESOLVED
            raise CyclicReferenceError([*chain, frame])
        if len(chain) >= self.policy.max_ref_depth:
            raise ReferenceDepthError(self.policy.max_ref_depth, ref)

        return self.walk(target, target_id, (*chain, frame))

    def _sibling_id(self, file_part: str) -> str | None:
        name = file_part
        while name.startswith(RELATIVE_PREFIXES):
            name = name[2:] if name.startswith("./") else name[3:]
        if name in self.documents:
            return name
        base = PurePosixPath(name).name
        for doc_id in self.documents:
            if PurePosixPath(doc_id).name == base:
                return doc_id
        return None
