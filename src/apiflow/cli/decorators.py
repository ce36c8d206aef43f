import sys
import traceback
from functools import wraps

import typer

from apiflow.adapter_sdk import AdapterError
from apiflow.common.errors import DispatchError

from .console import console, print_error


def _describe(exc: Exception) -> str:
    if isinstance(exc, DispatchError):
        return exc.get_safe_message()
    if isinstance(exc, AdapterError):
        return f"{exc.code.value}: {exc.detail}"
    return str(exc)


def handle_cli_errors(func):
    """
    Turns failures of a CLI command into a one-line message and exit code 1.

    Known failures (dispatch, adapter, missing files, bad values) print only
    their message. Anything else also prints the traceback. Ctrl-C exits 130.
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (typer.Exit, typer.Abort):
            raise
        except (DispatchError, AdapterError, FileNotFoundError, ValueError) as e:
            print_error(_describe(e))
            sys.exit(1)
        except KeyboardInterrupt:
            console.print("\n[note]Cancelled.[/note]")
            sys.exit(130)
        except Exception as e:
            print_error(f"unexpected {type(e).__name__}: {e}")
            console.print(traceback.format_exc(), markup=False)
            sys.exit(1)

    return wrapper
