from app.huddle import create_app

app = create_app()
