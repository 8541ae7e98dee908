from catalog_merge.cli import app

app()
