from fastapi import FastAPI
from mangum import Mangum

from ghrelay import GhRelay
from dotenv import load_dotenv


load_dotenv()

ghrelay = GhRelay()
app = FastAPI(lifespan=ghrelay.lifespan)


ghrelay.to_fastapi(app)


handler = Mangum(app)
