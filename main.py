# Copyright (c) 2025 Trae AI. All rights reserved.

import typer
from culler.cli.main import app as cli_app
from culler.server.app import Server

app = typer.Typer(help="Culler - rule-driven cleanup for your media library.")

# Add CLI commands
app.registered_commands.extend(cli_app.registered_commands)

@app.command("server")
def run_server(config_path: str = "config.yaml"):
    """
    Run the API server and the task scheduler.
    """
    server = Server(config_path)
    server.run()

if __name__ == "__main__":
    app()
