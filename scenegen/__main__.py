from scenegen.cli import app

app()
