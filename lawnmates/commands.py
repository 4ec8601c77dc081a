"""
Flask CLI commands
"""
import click

from lawnmates import db
from lawnmates.models import User, UserRole


def register_commands(app):

    @app.cli.command("create-admin")
    @click.option("--username", prompt=True)
    @click.option("--email", prompt=True)
    @click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
    def cli_create_admin(username, email, password):
        """Create an admin account."""
        email = email.strip().lower()
        if User.query.filter((User.email == email) | (User.username == username)).first():
            raise click.ClickException("A user with that username or email already exists")

        user = User(username=username, email=email, role=UserRole.ADMIN, full_name=username)
        user.set_password(password)
        db.session.add(user)
        db.session.commit()
        click.echo("Created admin {} (id {}).".format(user.username, user.id))
