#!/usr/bin/env python
"""
RBAC Management CLI

Command-line tool for seeding roles and bootstrapping staff accounts.

Usage:
    python manage_rbac.py init                                  # Seed default roles/permissions
    python manage_rbac.py list-roles                            # List roles and their permissions
    python manage_rbac.py list-permissions                      # List permissions and the roles holding them
    python manage_rbac.py show-role <role_name>                 # Show role details
    python manage_rbac.py create-user <username> <email> <role> # Create a staff account (prompts for password)
"""
import asyncio
import getpass
import sys
from collections import defaultdict

from pydantic import ValidationError as SchemaValidationError
from sqlalchemy import select

from app.core.exceptions import AppError
from app.core.rbac_init import DEFAULT_PERMISSIONS, DEFAULT_ROLES, initialize_rbac
from app.db.session import AsyncSessionLocal as async_session_maker
from app.models.rbac import Permission, Role
from app.schemas.user_schemas import UserCreateSchema
from app.services.user_service import UserService


async def initialize_system():
    """Initialize RBAC system with default roles and permissions."""
    async with async_session_maker() as db:
        roles = await initialize_rbac(db)
        print(f"RBAC system initialized: {', '.join(sorted(roles))}")


async def list_roles():
    async with async_session_maker() as db:
        result = await db.execute(select(Role).order_by(Role.name))
        roles = result.scalars().all()

        if not roles:
            print("No roles found. Run 'python manage_rbac.py init' first.")
            return

        print(f"\n{'Role':<20} {'Permissions':<50}")
        print("-" * 70)

        for role in roles:
            perms = ", ".join(sorted(p.name for p in role.permissions))
            print(f"{role.name:<20} {perms:<50}")


async def list_permissions():
    async with async_session_maker() as db:
        permissions = (
            await db.execute(select(Permission).order_by(Permission.name))
        ).scalars().all()
        roles = (await db.execute(select(Role))).scalars().all()

        holders = defaultdict(list)
        for role in roles:
            for perm in role.permissions:
                holders[perm.name].append(role.name)

        print(f"\n{'Permission':<25} {'Roles':<45}")
        print("-" * 70)

        for perm in permissions:
            print(f"{perm.name:<25} {', '.join(sorted(holders[perm.name])):<45}")


async def show_role(role_name: str):
    async with async_session_maker() as db:
        result = await db.execute(select(Role).where(Role.name == role_name))
        role = result.scalar_one_or_none()

        if not role:
            print(f"Role '{role_name}' not found.")
            return

        print(f"\nRole: {role.name}")
        print(f"   ID: {role.id}")
        description = role.description or DEFAULT_ROLES.get(role_name, {}).get("description")
        if description:
            print(f"   Description: {description}")

        print(f"\n   Permissions ({len(role.permissions)}):")
        for perm in sorted(role.permissions, key=lambda p: p.name):
            desc = DEFAULT_PERMISSIONS.get(perm.name, perm.description or "")
            print(f"   - {perm.name:<25} {desc}")


async def create_user(username: str, email: str, role: str):
    password = getpass.getpass("Password: ")
    if password != getpass.getpass("Confirm password: "):
        print("Error: Passwords do not match")
        return

    try:
        user_data = UserCreateSchema(
            username=username, email=email, password=password, role=role
        )
    except SchemaValidationError as e:
        for err in e.errors():
            print(f"Error: {'.'.join(str(p) for p in err['loc'])}: {err['msg']}")
        return

    async with async_session_maker() as db:
        try:
            user = await UserService(db).create_user(user_data)
            print(f"User '{user.username}' created with role '{user.role}'")
        except AppError as e:
            print(f"Error: {e.message}")


def print_usage():
    print(__doc__)


async def main():
    """Main CLI entry point."""
    if len(sys.argv) < 2:
        print_usage()
        return

    command = sys.argv[1].lower()

    if command == "init":
        await initialize_system()

    elif command == "list-roles":
        await list_roles()

    elif command == "list-permissions":
        await list_permissions()

    elif command == "show-role":
        if len(sys.argv) < 3:
            print("Error: Role name required")
            print("Usage: python manage_rbac.py show-role <role_name>")
            return
        await show_role(sys.argv[2])

    elif command == "create-user":
        if len(sys.argv) < 5:
            print("Error: Username, email and role required")
            print("Usage: python manage_rbac.py create-user <username> <email> <role>")
            return
        await create_user(sys.argv[2], sys.argv[3], sys.argv[4])

    else:
        print(f"Unknown command: {command}")
        print_usage()


if __name__ == "__main__":
    asyncio.run(main())
