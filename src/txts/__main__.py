from txts.cli import app

app()
