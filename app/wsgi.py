from app.fleet import create_app

app = create_app()
