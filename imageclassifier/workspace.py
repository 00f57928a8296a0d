from typing import Any, Iterator, Mapping


class Workspace:
    """Named in-memory objects shared between the caller and the backend.

    Plays the part of an interactive session namespace: the caller places
    datasets and networks here under a variable name and the backend resolves
    them by that name.
    """

    def __init__(self, variables: Mapping[str, Any] | None = None) -> None:
        self._variables: dict[str, Any] = dict(variables or {})

    def __contains__(self, name: object) -> bool:
        return name in self._variables

    def __iter__(self) -> Iterator[str]:
        return iter(self._variables)

    def __len__(self) -> int:
        return len(self._variables)

    def names(self) -> list[str]:
        return sorted(self._variables)

    def get(self, name: str) -> Any:
        return self._variables[name]

    def assign(self, name: str, value: Any) -> None:
        if not name.isidentifier():
            raise ValueError(f"'{name}' is not a valid variable name.")

        self._variables[name] = value

    def clear(self, name: str) -> None:
        self._variables.pop(name, None)
