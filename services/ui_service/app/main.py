# services/ui_service/app/main.py

import gradio as gr
import fastapi
import httpx
import logging
from typing import Optional
from core.config import settings
from .form import UploadForm, discard_form

# Setup logger
logger = logging.getLogger("PhotoBridge_Core").getChild("UIService")

# Global httpx client for calling the Photo Uploader service
api_client = httpx.AsyncClient(base_url=settings.PHOTO_UPLOADER_URL, timeout=120.0)


# --- Gradio Interface Functions ---

def _form(form: Optional[UploadForm]) -> UploadForm:
    """Session state starts empty; the form is created on first use."""
    return form if form is not None else UploadForm(api_client)


def _render(form: UploadForm):
    has_files = bool(form.selection)
    message = ""
    if form.message:
        message = f"**Error:** {form.message}" if form.message_is_error else form.message
    return (
        form,
        gr.update(value=form.preview_urls or None, visible=has_files),
        gr.update(visible=has_files, interactive=not form.uploading, value="Uploading..." if form.uploading else "Upload"),
        gr.update(visible=has_files),
        gr.update(value=message, visible=bool(message)),
        gr.update(value=[(p.url, p.filename) for p in form.uploaded_photos] or None, visible=bool(form.uploaded_photos)),
        None, # Preview selection is reset on every change
    )


def select_photos(paths, form):
    form = _form(form)
    form.select(paths)
    return _render(form)


def preview_clicked(evt: gr.SelectData):
    return evt.index


def remove_photo(index, form):
    form = _form(form)
    if index is None:
        return _render(form)
    form.remove(int(index))
    return _render(form)


def upload_started(form):
    # Disable the trigger while the request is in flight
    return gr.update(interactive=False, value="Uploading...")


async def upload_photos(form):
    form = _form(form)
    await form.upload()
    logger.info(f"Upload finished: {form.message}")
    # Clear the picker once the selection has been uploaded
    picker = gr.update(value=None) if not form.selection else gr.update()
    return _render(form) + (picker,)


# --- Build Gradio Interface ---
with gr.Blocks(theme=gr.themes.Soft(), title="Photo Bridge") as demo:
    gr.Markdown("# Photo Bridge")
    gr.Markdown("Pick photos, check the previews, and upload them to your notes.")
    # Preview copies of abandoned sessions are removed with the session state
    form_state = gr.State(None, delete_callback=discard_form)
    selected_index = gr.State(None)

    photo_input = gr.File(label="Select Photos", file_count="multiple", file_types=["image"], type="filepath")
    preview_gallery = gr.Gallery(label="Preview (click a photo to select it)", columns=2, visible=False, allow_preview=False)
    with gr.Row():
        remove_button = gr.Button("Remove selected", visible=False)
        upload_button = gr.Button("Upload", variant="primary", visible=False)
    message_box = gr.Markdown(visible=False)
    uploaded_gallery = gr.Gallery(label="Uploaded Photos", columns=2, visible=False)

    render_outputs = [form_state, preview_gallery, upload_button, remove_button, message_box, uploaded_gallery, selected_index]

    # --- Connect UI elements to functions ---
    photo_input.upload(select_photos, inputs=[photo_input, form_state], outputs=render_outputs)
    preview_gallery.select(preview_clicked, inputs=None, outputs=[selected_index])
    remove_button.click(remove_photo, inputs=[selected_index, form_state], outputs=render_outputs)
    upload_button.click(upload_started, inputs=[form_state], outputs=[upload_button]).then(
        upload_photos, inputs=[form_state], outputs=render_outputs + [photo_input]
    )


# --- Mount Gradio app within FastAPI ---
app = fastapi.FastAPI()
@app.get("/")
async def root():
    return {"message": "Photo Bridge UI Service is running. Access the Gradio interface at /ui"}
app = gr.mount_gradio_app(app, demo, path="/ui")
