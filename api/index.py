from mangum import Mangum

from pension.api import app

handler = Mangum(app, lifespan="off")
