# ===================================== IMPORTS ====================================== #

# Standard Library Imports
import logging
from pathlib import Path
from typing import List, Union

# Third Party Imports
import colorcet as cc
import matplotlib.pyplot as plt
import plotly.graph_objects as go
import plotly.io as pio

# Local Imports
from workflow_eve import constants

# ========================== INITIALIZATION & CONFIGURATION ========================== #

logger = logging.getLogger('workflow_eve')

# ================================= GLOBAL VARIABLES ================================= #

largecolorset = list(
  cc.glasbey + cc.glasbey_light + cc.glasbey_warm + cc.glasbey_cool + cc.glasbey_dark
)

# Define the plot template
pio.templates["eve"] = go.layout.Template(
  layout={
    'height': constants.DEFAULT_HEIGHT,
    'width': constants.DEFAULT_WIDTH,
    'title': {
      'font': {
        'family': 'HelveticaNeue-CondensedBold, Helvetica, Sans-serif',
        'size': 40,
        'color': '#000' # Black
      }
    },
    'title_x': 0.5,
    'font': {
      'family': 'Helvetica Neue, Helvetica, Sans-serif',
      'size': 26,
      'color' : '#000'
    },
    'paper_bgcolor': 'rgba(0, 0, 0, 0)', # Transparent
    'plot_bgcolor': '#fff', # White
    'colorway': largecolorset,
    'xaxis': {
      'showgrid': False,
      'zeroline': True,
      'showline': True,
      'linewidth': 3,
      'linecolor': 'black',
      'automargin': True,
      'mirror': True
    },
    'yaxis': {
      'showgrid': False,
      'zeroline': True,
      'showline': True,
      'linewidth': 3,
      'linecolor': 'black',
      'automargin': True,
      'mirror': True
    }
  }
)
pio.templates.default = "eve"

# ==================================== FUNCTIONS ===================================== #

def plotly_show_and_save(
    fig,
    show: bool = False,
    output_path: Union[str, Path] = None,
    save_as: List[str] = ['png', 'html'],
    scale: int = 3,
    verbose: bool = False,
    **write_kwargs
) -> List[Path]:
    """
    Save a Plotly figure to static and/or HTML formats and optionally display it.

    Args:
        fig:            Plotly Figure object to be saved/displayed.
        show:           Whether to display the figure (default: False).
        output_path:    Base output path for files. Format-specific extensions are
                        appended (.png, .html, .json). Directory will be created if
                        needed.
        save_as:        Formats to save ('png', 'svg', 'pdf', 'html', 'json').
        scale:          DPI‑like scale factor for raster outputs.
        verbose:        If True, logs success messages; errors are always logged.
        **write_kwargs: Extra args forwarded to `fig.write_image` / `fig.write_html`.

    Returns:
        Paths that were written.

    Notes:
        - Static export requires kaleido: install with `pip install -U kaleido`.
    """
    written: List[Path] = []
    if output_path:
        output_path = Path(output_path).expanduser().resolve()
        output_path.parent.mkdir(parents=True, exist_ok=True)

        log_ok = (lambda msg: logger.debug(msg)) if verbose else (lambda *_: None)

        static_exts = {"png", "jpg", "jpeg", "pdf", "svg", "eps"}
        stem = str(output_path)
        for ext in list(static_exts) + ['html', 'json']:
            stem = stem.removesuffix(f'.{ext}')

        for ext in sorted(static_exts.intersection(save_as)):
            target = Path(f"{stem}.{ext}")
            try:
                fig.write_image(str(target), format=ext, scale=scale, **write_kwargs)
                written.append(target)
                log_ok(f"Saved figure to '{target}'.")
            except Exception as e:
                logger.error(
                    f"Failed to save figure: {str(e)}. "
                    "Make sure the export engine is installed "
                    "(e.g. `pip install -U kaleido`)."
                )

        if 'html' in save_as:
            target = Path(f"{stem}.html")
            fig.write_html(str(target), **write_kwargs)
            written.append(target)
            log_ok(f"Saved figure to '{target}'.")

        if 'json' in save_as:
            target = Path(f"{stem}.json")
            fig.write_json(str(target), engine="json")
            written.append(target)
            log_ok(f"Saved figure to '{target}'.")

    if show:
        fig.show()
    return written


def matplotlib_save(fig, output_path: Union[str, Path], dpi: int = 300) -> Path:
    """Save a matplotlib figure and close it."""
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(output_path, dpi=dpi, bbox_inches="tight")
    plt.close(fig)
    logger.info(f"Figure saved to: {output_path}")
    return output_path
