from app.djtquest import create_app

app = create_app()
