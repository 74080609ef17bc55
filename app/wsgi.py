from app.arsd import create_app

app = create_app()
