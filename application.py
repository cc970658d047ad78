"""
Elastic Beanstalk entry point for the Temporary Social FastAPI application.
Elastic Beanstalk looks for a module-level `application` object.
"""

from tempsocial.main import app
from tempsocial.config import settings

application = app

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(application, host=settings.app_host, port=settings.app_port)
