from __future__ import annotations

from typing import Callable, Dict, List, Optional

from shipwright.utils.exceptions import UnresolvedReferenceError

REFERENCE_OPEN = "${"
REFERENCE_CLOSE = "}"

Lookup = Callable[[str], Optional[str]]


class VariableResolver:
    """Evaluates ``${Namespace.Key}`` references inside strings.

    Each namespace is backed by a lookup callable returning the string value of a
    key or None when it is unknown. References may be nested
    (``${Env.${Prefs.Which}}``): the innermost reference is substituted first and
    its result becomes part of the enclosing reference. Substituted text is never
    scanned again, so a value that itself contains ``${...}`` is emitted as-is.

    Attributes:
        strict: Whether an unresolved reference raises instead of being kept verbatim
        unresolved: Paths kept verbatim so far in non-strict mode
    """

    def __init__(self, strict: bool = True) -> None:
        self.strict = strict
        self._namespaces: Dict[str, Lookup] = {}
        self.unresolved: List[str] = []

    def register(self, namespace: str, lookup: Lookup) -> None:
        """Register the lookup used for ``namespace``."""
        self._namespaces[namespace] = lookup

    def resolve(self, path: str) -> Optional[str]:
        """Resolve a dotted ``Namespace.Key`` path.

        Returns:
            The value, or None if the namespace or key is unknown
        """
        namespace, _, key = path.strip().partition(".")
        lookup = self._namespaces.get(namespace)
        if lookup is None or not key:
            return None
        return lookup(key)

    def evaluate(self, text: str) -> str:
        """Substitute every reference in ``text``.

        Raises:
            UnresolvedReferenceError: If a reference cannot be resolved in strict mode
        """
        if REFERENCE_OPEN not in text:
            return text

        chunks: List[str] = []
        openings: List[int] = []
        index = 0
        while index < len(text):
            if text.startswith(REFERENCE_OPEN, index):
                openings.append(len(chunks))
                chunks.append(REFERENCE_OPEN)
                index += len(REFERENCE_OPEN)
                continue

            char = text[index]
            index += 1
            if char == REFERENCE_CLOSE and openings:
                start = openings.pop()
                path = "".join(chunks[start + 1:])
                value = self.resolve(path)
                if value is None:
                    if self.strict:
                        raise UnresolvedReferenceError(
                            f"Unresolved reference ${{{path}}}", reference=path
                        )
                    self.unresolved.append(path)
                    value = REFERENCE_OPEN + path + REFERENCE_CLOSE
                del chunks[start:]
                chunks.append(value)
                continue
            chunks.append(char)

        return "".join(chunks)
