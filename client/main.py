"""
Command-line entry point for the authenticated API client.

Provides register/login/logout/password-reset commands and session
inspection on top of the auth operations, for scripting and manual testing
against an auth server.
"""

import sys
import argparse
import asyncio
import getpass
import json
import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from shared.exceptions import AuthError, ConfigurationError, TokenStorageError, handle_exception
from shared.logging_config import LogFormat, LogLevel, log_structured_error, setup_logging
from shared.models import LoginUser, RegisterUser, ResetUser
from client.api_client import ClientContext
from client.auth.auth_service import AuthService
from client.auth.token_codec import peek_expiry
from client.auth.token_storage import TokenSlot, TokenStore, create_storage
from client.config import ClientConfiguration
from client.user_service import UserService

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_AUTH_ERROR = 1
EXIT_CONFIG_ERROR = 2
EXIT_INVALID_INPUT = 3
EXIT_INTERRUPTED = 130


def parse_arguments(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="auth-client",
        description="Authenticated API client",
        epilog="""
Examples:
  %(prog)s --register --username alice --email alice@example.com
  %(prog)s --login --username alice
  %(prog)s --test                 # Call the authenticated test route
  %(prog)s --whoami --json        # Show the current user as JSON
  %(prog)s --request-reset alice@example.com
  %(prog)s --reset KEY            # Set a new password with a reset key
  %(prog)s --logout
        """,
        formatter_class=argparse.RawDescriptionHelpFormatter
    )

    operation_group = parser.add_mutually_exclusive_group(required=True)
    operation_group.add_argument("--register", action="store_true",
                                 help="Register a new user")
    operation_group.add_argument("--login", action="store_true",
                                 help="Log in and store the session")
    operation_group.add_argument("--logout", action="store_true",
                                 help="Forget the stored session")
    operation_group.add_argument("--test", action="store_true",
                                 help="Call the authenticated test route")
    operation_group.add_argument("--whoami", action="store_true",
                                 help="Show the current user")
    operation_group.add_argument("--list-users", action="store_true",
                                 help="List all users (admin only)")
    operation_group.add_argument("--delete-user", type=str, metavar="UUID",
                                 help="Delete a user (admin only)")
    operation_group.add_argument("--request-reset", type=str, metavar="EMAIL",
                                 help="Request a password reset key by email")
    operation_group.add_argument("--reset", type=str, metavar="KEY",
                                 help="Set a new password using a reset key")
    operation_group.add_argument("--status", action="store_true",
                                 help="Show local session status")

    user_group = parser.add_argument_group('User')
    user_group.add_argument("--username", type=str, metavar="NAME")
    user_group.add_argument("--email", type=str, metavar="EMAIL")
    user_group.add_argument("--password-stdin", action="store_true",
                            help="Read the password from standard input")

    config_group = parser.add_argument_group('Configuration')
    config_group.add_argument("--config", type=str, metavar="FILE",
                              help="Configuration file path")
    config_group.add_argument("--server-url", type=str, metavar="URL",
                              help="Override server base URL")
    config_group.add_argument("--storage", type=str, metavar="BACKEND",
                              choices=["auto", "keyring", "file", "memory"],
                              help="Override token storage backend")
    config_group.add_argument("--save-config", action="store_true",
                              help="Write --server-url and --storage to the configuration file")

    output_group = parser.add_argument_group('Output')
    output_group.add_argument("--json", action="store_true",
                              help="Output results in JSON format")
    output_group.add_argument("--verbose", "-v", action="store_true",
                              help="Enable verbose output")
    output_group.add_argument("--quiet", "-q", action="store_true",
                              help="Suppress non-essential output")

    debug_group = parser.add_argument_group('Debug')
    debug_group.add_argument("--debug", action="store_true",
                             help="Enable debug logging")
    debug_group.add_argument("--log-file", type=str, metavar="FILE",
                             help="Also log to file")

    args = parser.parse_args(argv)

    if args.quiet and args.verbose:
        parser.error("--quiet and --verbose are mutually exclusive")

    if (args.register or args.login) and not args.username:
        parser.error("--register and --login require --username")

    if args.register and not args.email:
        parser.error("--register requires --email")

    for option, value in (('--delete-user', args.delete_user),
                          ('--request-reset', args.request_reset),
                          ('--reset', args.reset)):
        if value is not None and not value.strip():
            parser.error(f"{option} requires a non-empty value")

    return args


def configure_logging(args, config: ClientConfiguration) -> None:
    """Configure logging based on command line arguments and configuration."""
    if args.debug:
        log_level = LogLevel.DEBUG
    elif args.verbose:
        log_level = LogLevel.INFO
    elif args.quiet or args.json:
        log_level = LogLevel.ERROR
    elif config.get_log_level() in LogLevel.__members__:
        log_level = LogLevel[config.get_log_level()]
    else:
        log_level = LogLevel.WARNING

    try:
        log_format = LogFormat(config.get_log_format())
    except ValueError:
        log_format = LogFormat.STANDARD
    if args.debug and log_format == LogFormat.STANDARD:
        log_format = LogFormat.DETAILED

    setup_logging(
        log_level=log_level,
        log_format=log_format,
        log_file=args.log_file or config.get_log_file(),
        max_file_size=int(config.get_config('logging.max_size', 10485760)),
        backup_count=int(config.get_config('logging.backup_count', 3)),
        enable_audit=args.debug or args.verbose or bool(config.get_audit_file()),
        audit_file=config.get_audit_file()
    )


def load_configuration(args) -> ClientConfiguration:
    config = ClientConfiguration(args.config)
    if args.server_url:
        config.set_override('server_url', args.server_url)
    if args.storage:
        config.set_override('storage_backend', args.storage)

    if args.save_config:
        if args.server_url:
            config.set_config('server.url', args.server_url)
        if args.storage:
            config.set_config('storage.backend', args.storage)
        config.save_configuration()
    return config


def read_password(args, prompt: str = "Password: ") -> str:
    if args.password_stdin:
        return sys.stdin.readline().rstrip('\n')
    return getpass.getpass(prompt)


def build_token_store(config: ClientConfiguration) -> TokenStore:
    storage = create_storage(
        config.get_storage_backend(),
        service_name=config.get_storage_service_name(),
        file_path=config.get_storage_file()
    )
    return TokenStore(storage)


def emit(args, result: Dict[str, Any], message: Optional[str] = None) -> None:
    """Print a result as JSON or as a human-readable message."""
    if args.json:
        print(json.dumps(result, indent=2, default=str))
    elif message and not args.quiet:
        print(message)


async def run_action(args, config: ClientConfiguration, token_store: TokenStore) -> int:
    """Run the selected operation and return the exit code."""
    context = ClientContext.from_config(config)
    auth = AuthService(context, token_store)
    users = UserService(auth)

    try:
        if args.register:
            user = RegisterUser(username=args.username, password=read_password(args), email=args.email)
            info = await auth.register(user)
            emit(args, info.model_dump(), f"Registered {args.username} ({info.uuid})")

        elif args.login:
            user = LoginUser(username=args.username, password=read_password(args))
            info = await auth.login(user)
            emit(args, info.model_dump(), f"Logged in as {args.username}")

        elif args.logout:
            auth.logout()
            emit(args, {'logged_out': True}, "Logged out")

        elif args.test:
            status = await auth.test_auth_route()
            emit(args, {'status': status}, f"Auth test route answered with status {status}")

        elif args.whoami:
            info = await users.get_user_info()
            if info.is_anonymous:
                emit(args, info.model_dump(), "Not logged in")
                return EXIT_AUTH_ERROR
            role = "admin" if info.is_admin else "user"
            emit(args, info.model_dump(), f"{info.username or info.uuid} ({role})")

        elif args.list_users:
            user_list = await users.get_all_users()
            emit(args, {'users': [u.model_dump() for u in user_list]},
                 "\n".join(f"{u.uuid}  {u.username or ''}" for u in user_list) or "No users")

        elif args.delete_user is not None:
            status = await users.delete_user(args.delete_user)
            emit(args, {'status': status}, f"Delete answered with status {status}")
            return EXIT_OK if 200 <= status < 300 else EXIT_AUTH_ERROR

        elif args.request_reset is not None:
            status = await auth.request_reset(args.request_reset)
            emit(args, {'status': status}, "Password reset requested")

        elif args.reset is not None:
            user = ResetUser(password=read_password(args, "New password: "))
            status = await auth.reset_password(user, args.reset)
            emit(args, {'status': status}, "Password reset")

        return EXIT_OK

    finally:
        await context.close()


def show_status(args, config: ClientConfiguration, token_store: TokenStore) -> int:
    """Print local session status without contacting the server."""
    requester = token_store.get(TokenSlot.REQUESTER)
    access = token_store.get(TokenSlot.ACCESS)
    access_expiry = peek_expiry(access) if access else None

    status = {
        'server_url': config.get_server_url(),
        'storage_backend': type(token_store.storage).__name__,
        'authenticated': requester is not None,
        'access_token_stored': access is not None,
        'access_token_expires_at': access_expiry.isoformat() if access_expiry else None,
        'config_file': config.get_config_file_path(),
        'config': config.get_all_config()
    }

    lines = [
        f"Server:        {status['server_url']}",
        f"Storage:       {status['storage_backend']}",
        f"Authenticated: {'yes' if status['authenticated'] else 'no'}",
    ]
    if access_expiry:
        lines.append(f"Access token expires: {access_expiry:%Y-%m-%d %H:%M:%S}")
    emit(args, status, "\n".join(lines))
    return EXIT_OK


def main(argv=None) -> int:
    """Main entry point for the client."""
    args = parse_arguments(argv)

    try:
        config = load_configuration(args)
    except ConfigurationError as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    configure_logging(args, config)

    try:
        token_store = build_token_store(config)
        if args.status:
            return show_status(args, config, token_store)
        return asyncio.run(run_action(args, config, token_store))

    except AuthError as e:
        logger.debug(f"Operation failed: {e!r}")
        if args.json:
            print(json.dumps(e.to_dict(), indent=2, default=str))
        else:
            print(f"Error: {e.display_message}", file=sys.stderr)
        return EXIT_AUTH_ERROR
    except ValidationError as e:
        print(f"Invalid input: {e.errors()[0]['msg']}", file=sys.stderr)
        return EXIT_INVALID_INPUT
    except TokenStorageError as e:
        print(f"Token storage error: {e.message}", file=sys.stderr)
        return EXIT_CONFIG_ERROR
    except KeyboardInterrupt:
        print("\nInterrupted by user", file=sys.stderr)
        return EXIT_INTERRUPTED
    except Exception as e:
        error = handle_exception(e, context={'command': 'auth-client'})
        log_structured_error(logger, error)
        print(f"Error: {error.message}", file=sys.stderr)
        return EXIT_AUTH_ERROR


if __name__ == "__main__":
    sys.exit(main())
