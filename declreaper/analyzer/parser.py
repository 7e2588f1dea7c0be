"""Tree-sitter parser for C and C++ reduction inputs."""
from pathlib import Path
from typing import Optional

from tree_sitter import Language, Parser, Tree
import tree_sitter_c as tsc
import tree_sitter_cpp as tscpp


class LanguageParser:
    """C/C++ parser using the tree-sitter v0.22+ API."""

    SUPPORTED_LANGUAGES = {
        '.c': 'c',
        '.i': 'c',
        '.cc': 'cpp',
        '.cpp': 'cpp',
        '.cxx': 'cpp',
        '.c++': 'cpp',
        '.h': 'cpp',
        '.hh': 'cpp',
        '.hpp': 'cpp',
        '.hxx': 'cpp',
        '.ii': 'cpp',
    }

    def __init__(self, language: str):
        """Initialize parser for given language (c, cpp).

        Args:
            language: One of 'c', 'cpp'

        Raises:
            ValueError: If language is not supported
        """
        self.language = language
        self.parser = self._create_parser()

    def _create_parser(self) -> Parser:
        """Build a Parser for the configured grammar.

        Returns:
            Configured Parser instance

        Raises:
            ValueError: If language is not supported
        """
        if self.language == 'c':
            lang = Language(tsc.language())
        elif self.language == 'cpp':
            lang = Language(tscpp.language())
        else:
            raise ValueError(f"Unsupported language: {self.language}")

        return Parser(lang)

    def parse_source(self, source_code: bytes) -> Tree:
        """Parse in-memory source bytes."""
        return self.parser.parse(source_code)

    @classmethod
    def language_for(cls, file_path: str | Path) -> Optional[str]:
        """Language name implied by a file extension, or None."""
        return cls.SUPPORTED_LANGUAGES.get(Path(file_path).suffix.lower())

