import os
import sys

from colorama import Fore, Style, init
init(autoreset=True)


def debug_enabled() -> bool:
    return os.getenv("MESHLIB_DEBUG", "0") == "1"


def _emit(color, msg):
    text = color + str(msg) + Style.RESET_ALL
    try:
        print(text)
    except UnicodeEncodeError:
        encoding = getattr(sys.stdout, 'encoding', None) or 'utf-8'
        print(text.encode(encoding, errors='replace').decode(encoding))

def print_info(msg):
    _emit(Fore.CYAN, msg)

def print_warn(msg):
    _emit(Fore.YELLOW, msg)

def print_error(msg):
    _emit(Fore.RED, msg)

def print_success(msg):
    _emit(Fore.GREEN, msg)

def print_debug(msg):
    if debug_enabled():
        _emit(Fore.MAGENTA, msg)

def log_error(context: str, err) -> None:
    """Report a caught exception without interrupting the caller."""
    print_error(f"❌ {context}: {err!r}")
