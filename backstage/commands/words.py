"""Tokenizers for chat command lines."""

import re
from typing import List, Optional

_WHITESPACE = " \t\r\n"
_WHITESPACE_RE = re.compile(r"[ \t\r\n]")
_ALNUM_RE = re.compile(r"[A-Za-z0-9]+")


class Words:
    """Split a command line into whitespace-delimited tokens.

    A double-quoted substring is a single token with the quotes
    removed; an unterminated quote runs to the end of the line.
    rest() returns the untokenized remainder, so a handler can take
    one or two leading arguments and keep the rest verbatim.

        >>> w = Words('edit hello "Hello, {{caller}}!"')
        >>> w.next(), w.next(), w.next()
        ('edit', 'hello', 'Hello, {{caller}}!')
    """

    def __init__(self, string: str):
        self._string = string

    def rest(self) -> str:
        return self._string

    def next(self) -> Optional[str]:
        string = self._string.lstrip(_WHITESPACE)
        if not string:
            self._string = ""
            return None

        if string[0] == '"':
            end = string.find('"', 1)
            if end == -1:
                self._string = ""
                return string[1:]
            self._string = string[end + 1:]
            return string[1:end]

        match = _WHITESPACE_RE.search(string)
        if match is None:
            self._string = ""
            return string
        self._string = string[match.start():]
        return string[:match.start()]


def trimmed_words(text: str) -> List[str]:
    """Alphanumeric words of a chat message, punctuation dropped.

        >>> trimmed_words("hello, do you feel alive?")
        ['hello', 'do', 'you', 'feel', 'alive']
    """
    return _ALNUM_RE.findall(text)
