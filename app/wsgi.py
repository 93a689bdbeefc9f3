from app.bizadmin import create_app

app = create_app()
