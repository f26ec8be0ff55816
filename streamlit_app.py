"""
Tile Mosaic — Gallery Edition

Run with:
    streamlit run streamlit_app.py
"""

from __future__ import annotations

import io
import time
from pathlib import Path

import numpy as np
import streamlit as st
from PIL import Image, ImageDraw

from tile_mosaic.average_color import make_strategy
from tile_mosaic.catalog import PieceCatalog
from tile_mosaic.compositor import Compositor
from tile_mosaic.config import ALGORITHMS, MosaicConfig
from tile_mosaic.errors import MosaicError
from tile_mosaic.image_io import to_rgba_array

# -- Page config -------------------------------------------------------
st.set_page_config(
    page_title="Tile Mosaic",
    page_icon=None,
    layout="wide",
    initial_sidebar_state="collapsed",
)

_DEFAULTS = MosaicConfig()

# -- CSS ---------------------------------------------------------------
st.markdown("""
<style>
    .stApp {
        background-color: #faf9f6;
        color: #2a2a2a;
        font-family: 'Inter', 'Helvetica Neue', sans-serif;
    }
    .block-container {
        max-width: 1000px;
        padding-top: 3.5rem;
        padding-bottom: 4rem;
    }
    .gallery-title {
        font-family: 'Cormorant Garamond', 'Georgia', serif;
        font-size: 2.8rem;
        font-weight: 300;
        text-align: center;
        border-bottom: 1px solid #1a1a1a;
        padding-bottom: 0.6rem;
        margin-bottom: 0.5rem;
    }
    .gallery-subtitle {
        font-size: 0.75rem;
        font-weight: 300;
        line-height: 1.8;
        margin-bottom: 3rem;
    }
    .stButton > button, .stDownloadButton > button {
        border-radius: 0px !important;
        text-transform: uppercase;
        letter-spacing: 0.10em;
    }
    #MainMenu {visibility: hidden;}
    footer {visibility: hidden;}
    header {visibility: hidden;}
</style>
""", unsafe_allow_html=True)


# -- Helpers -----------------------------------------------------------

def _add_passepartout(img: Image.Image, border: int = 20) -> Image.Image:
    w, h = img.size
    bg = (250, 249, 246)
    canvas = Image.new("RGB", (w + border * 2, h + border * 2), bg)
    canvas.paste(img, (border, border), img if img.mode == "RGBA" else None)
    draw = ImageDraw.Draw(canvas)
    draw.rectangle(
        [border - 1, border - 1, border + w, border + h],
        outline=(224, 222, 216), width=1,
    )
    return canvas


@st.cache_resource(show_spinner="Loading pieces ...")
def _load_catalog(
    pieces_dir: str,
    tile_size: int,
    allow_transparent: bool,
    algorithm: str,
    iterations: int,
    clusters: int,
    min_score: float,
) -> PieceCatalog:
    strategy = make_strategy(
        algorithm, iterations=iterations, clusters=clusters, min_score=min_score,
    )
    return PieceCatalog.load(
        pieces_dir,
        allow_transparent=allow_transparent,
        strategy=strategy,
        tile_size=tile_size,
    )


# -- Title -------------------------------------------------------------
st.markdown(
    '<div class="gallery-title">Tile Mosaic</div>',
    unsafe_allow_html=True,
)
st.markdown(
    '<div class="gallery-subtitle">'
    "Upload any image and it is rebuilt out of a folder of small picture tiles. "
    "Every pixel of the downscaled image is replaced by the tile whose dominant "
    "colour is closest, optionally after Floyd-Steinberg dithering so that "
    "gradients survive a small tile library."
    "</div>",
    unsafe_allow_html=True,
)

# -- Controls ----------------------------------------------------------
pieces_dir = st.text_input("Pieces folder", str(_DEFAULTS.pieces_dir))

ctrl1, ctrl2, ctrl3 = st.columns(3)
with ctrl1:
    max_side = st.slider("Max side (px)", 8, 200, 48)
    tile_size = st.slider("Tile size", 4, 64, _DEFAULTS.tile_size)
with ctrl2:
    algorithm = st.selectbox("Colour algorithm", ALGORITHMS)
    min_score = st.number_input(
        "K-means max score (0 = off)", min_value=0.0,
        value=_DEFAULTS.cluster_min_score, step=0.5,
        disabled=algorithm != "kmeans",
    )
    workers = st.slider("Workers", 1, 16, _DEFAULTS.workers)
with ctrl3:
    dither = st.checkbox("Dithering", value=_DEFAULTS.dither)
    allow_transparent = st.checkbox(
        "Allow transparent pieces", value=_DEFAULTS.allow_transparent_pieces,
    )

st.markdown("---")

# -- Upload ------------------------------------------------------------
uploaded = st.file_uploader(
    "Select artwork", type=["jpg", "jpeg", "png", "webp", "bmp"],
)

if uploaded is None:
    st.markdown(
        '<p style="font-family: Cormorant Garamond, Georgia, serif; '
        'color: #bbb; font-style: italic; margin-top: 2rem;">'
        "Select an artwork to begin.</p>",
        unsafe_allow_html=True,
    )
    st.stop()

original = Image.open(io.BytesIO(uploaded.getvalue())).convert("RGBA")
target = to_rgba_array(original, max_side)
h, w = target.shape[:2]

if not Path(pieces_dir).is_dir():
    st.error(f"Pieces folder '{pieces_dir}' does not exist.")
    st.stop()

if st.button("COMPOSE", type="primary", use_container_width=True):
    try:
        catalog = _load_catalog(
            pieces_dir, tile_size, allow_transparent, algorithm,
            _DEFAULTS.cluster_iterations, _DEFAULTS.cluster_count, min_score,
        )
        t0 = time.perf_counter()
        with st.spinner("Composing ..."):
            mosaic = Compositor(catalog, workers=workers).compose(target, dither=dither)
        elapsed = time.perf_counter() - t0
    except MosaicError as exc:
        st.error(str(exc))
        st.stop()

    mosaic_img = Image.fromarray(mosaic)
    st.image(_add_passepartout(mosaic_img, border=28), use_container_width=True)

    buf = io.BytesIO()
    mosaic_img.save(buf, format="PNG")
    _, dl_col, _ = st.columns([1, 2, 1])
    with dl_col:
        st.download_button(
            "SAVE ART",
            data=buf.getvalue(),
            file_name="tile_mosaic.png",
            mime="image/png",
            use_container_width=True,
        )

    m1, m2, m3 = st.columns(3)
    m1.metric("Resolution", f"{mosaic.shape[1]} × {mosaic.shape[0]}")
    m2.metric("Pieces", f"{len(catalog):,}")
    m3.metric("Time", f"{elapsed:.1f} s")
else:
    prev1, prev2 = st.columns(2)
    with prev1:
        st.image(original, use_container_width=True)
    with prev2:
        st.image(
            Image.fromarray(target).resize((w * 8, h * 8), Image.NEAREST),
            use_container_width=True,
        )
