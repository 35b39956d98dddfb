from vmbootstrap.cli import app

app(prog_name="vmbootstrap")
