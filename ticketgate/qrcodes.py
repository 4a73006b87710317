import base64
from io import BytesIO

import qrcode
from starlette.concurrency import run_in_threadpool


def qr_png_bytes(data: str) -> bytes:
    qr = qrcode.QRCode(box_size=8, border=2)
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def qr_data_url(data: str) -> str:
    png = qr_png_bytes(data)
    return "data:image/png;base64," + base64.b64encode(png).decode()


async def render_qr(data: str) -> str:
    # PIL rendering is CPU work; keep it off the event loop
    return await run_in_threadpool(qr_data_url, data)
