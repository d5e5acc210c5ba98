from invoke import task


@task
def env(c):
    """
    Create/update the project virtual environment and install dependencies.
    """
    c.run("uv sync --extra dev")


@task(pre=[env], help={"port": "Port for the HTTP API (default from ASK_TENNIS_PORT)"})
def run(c, port=None):
    """
    Launch the Ask Tennis HTTP API.
    """
    port_arg = f" --port {port}" if port else ""
    c.run(f"uv run python -m ask_tennis serve{port_arg}", pty=True)


@task(pre=[env])
def mcp(c):
    """
    Launch the Ask Tennis MCP server on stdio.
    """
    c.run("uv run python -m ask_tennis mcp", pty=True)


@task
def test(c):
    """
    Run the test suite.
    """
    c.run("uv run pytest tests -q", pty=True)
