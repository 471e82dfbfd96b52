"""Interface for user interaction.

Defines the contract for presenting results and errors to the user,
allowing different UI implementations (console, tests).
"""

import abc
from typing import Any, Dict, List, Optional, Sequence


class UserInterface(abc.ABC):
    """Abstract Base Class for user interface interactions."""

    @abc.abstractmethod
    def display_output(self, output: Any, **kwargs: Any) -> None:
        """Displays a structured payload (rendered as JSON)."""
        pass

    @abc.abstractmethod
    def display_info(self, message: str) -> None:
        """Displays an informational message."""
        pass

    @abc.abstractmethod
    def display_error(self, message: str) -> None:
        """Displays an error message."""
        pass

    @abc.abstractmethod
    def display_table(
        self,
        columns: Sequence[str],
        rows: List[Sequence[Any]],
        title: Optional[str] = None,
    ) -> None:
        """Displays rows in a table."""
        pass

    def display_mapping(self, data: Dict[str, Any], title: Optional[str] = None) -> None:
        """Displays key/value pairs as a two-column table."""
        self.display_table(["Key", "Value"], [[k, v] for k, v in data.items()], title=title)
