from agentloop.main import cli

cli()
