"""LC-3 Virtual Machine Interactive Demo.

A Gradio web interface for running LC-3 object images.

Usage:
    cd /path/to/lc3-vm
    pip install -e ".[demo]"
    python demo/gradio_app.py

Features:
    - Upload one or more .obj images (loaded in order)
    - Supply keyboard input for GETC/IN and keyboard polling
    - See program output, final registers and the execution trace
"""

import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import gradio as gr
from lc3_vm import LC3CPU, ScriptedTerminal
from lc3_vm.decode import OPCODE_NAMES, opcode_of
from lc3_vm.errors import LC3Error


# =============================================================================
# Example Programs
# =============================================================================

# Hand-assembled images: origin word followed by program words
EXAMPLE_IMAGES = {
    "Hello World": [
        0x3000,
        0xE002,  # LEA R0, MSG
        0xF022,  # PUTS
        0xF025,  # HALT
        *[ord(c) for c in "Hello, World!\n"], 0x0000,
    ],
    "Echo Key": [
        0x3000,
        0xF023,  # IN
        0xF021,  # OUT
        0xF025,  # HALT
    ],
    "Count Down": [
        0x3000,
        0x5260,  # AND R1, R1, #0
        0x1269,  # ADD R1, R1, #9
        0x2005,  # LOOP LD R0, ZERO
        0x1001,  # ADD R0, R0, R1
        0xF021,  # OUT
        0x127F,  # ADD R1, R1, #-1
        0x07FB,  # BRzp LOOP
        0xF025,  # HALT
        0x0030,  # ZERO .FILL x30
    ],
}


def image_bytes(words) -> bytes:
    return b"".join(word.to_bytes(2, "big") for word in words)


# =============================================================================
# Execution Functions
# =============================================================================

def run_image(files, example_name: str, keyboard: str, max_cycles: int) -> tuple:
    """Run uploaded images (or a built-in example) and return results.

    Args:
        files: Uploaded image file paths (may be empty)
        example_name: Built-in example used when nothing is uploaded
        keyboard: Keys delivered to GETC/IN and the keyboard registers
        max_cycles: Maximum execution cycles

    Returns:
        Tuple of (output_text, summary_text, registers_text, trace_text)
    """
    terminal = ScriptedTerminal(keyboard.replace("\\n", "\n"))
    cpu = LC3CPU(terminal=terminal, max_cycles=int(max_cycles), trace=True, trace_depth=200)

    try:
        if files:
            for f in files:
                cpu.load_image(getattr(f, "name", f))
        elif example_name in EXAMPLE_IMAGES:
            cpu.load_image_bytes(image_bytes(EXAMPLE_IMAGES[example_name]), example_name)
        else:
            return "", "Error: No image provided", "", ""
    except LC3Error as e:
        return "", f"Error: {e}", "", ""

    try:
        cpu.run()
    except LC3Error as e:
        error_msg = str(e)
    else:
        error_msg = None

    # Format summary
    summary = cpu.get_summary()
    summary_lines = [
        "EXECUTION SUMMARY",
        "=" * 40,
        f"Cycles: {summary['cycles']}",
        f"Halted: {'Yes' if summary['halted'] else 'No'}",
        f"PC:     0x{summary['pc']:04X}",
    ]
    if error_msg:
        summary_lines.append(f"\nRuntime: {error_msg}")
    summary_text = "\n".join(summary_lines)

    # Format registers
    reg_lines = [
        "FINAL REGISTERS",
        "=" * 30,
    ]
    for reg, value in summary["registers"].items():
        marker = " *" if value != 0 else ""
        reg_lines.append(f"  {reg:>4}: 0x{value:04X} {value:>6}{marker}")
    reg_lines.append("")
    reg_lines.append("FLAGS")
    reg_lines.append("-" * 30)
    for flag, value in summary["flags"].items():
        reg_lines.append(f"  {flag}: {value}")
    registers_text = "\n".join(reg_lines)

    # Format trace
    trace = cpu.get_trace()
    trace_lines = [
        f"EXECUTION TRACE (last {len(trace)} instructions)",
        "=" * 60,
    ]
    for entry in trace:
        name = OPCODE_NAMES[opcode_of(entry.instruction)]
        trace_lines.append(
            f"[{entry.cycle:>6}] 0x{entry.address:04X}: {entry.instruction:04X} "
            f"{name:<5} {entry.decode_result.key} {entry.decode_result.params}"
        )
        if entry.error:
            trace_lines.append(f"         ERROR: {entry.error}")
    trace_text = "\n".join(trace_lines)

    return terminal.output, summary_text, registers_text, trace_text


# =============================================================================
# Gradio Interface
# =============================================================================

def create_demo():
    """Create and return the Gradio demo interface."""

    with gr.Blocks(title="LC-3 VM Demo", theme=gr.themes.Soft()) as demo:
        gr.Markdown("""
        # LC-3 Virtual Machine

        Run assembled LC-3 object images. Each image starts with its origin
        word; execution starts at `x3000` and ends at `TRAP x25` (HALT).

        **Pipeline**: `fetch -> decode -> key -> registry -> state`
        """)

        with gr.Row():
            with gr.Column(scale=2):
                gr.Markdown("### Program")

                image_files = gr.File(
                    label="Object images (.obj)",
                    file_count="multiple",
                    type="filepath"
                )
                example_dropdown = gr.Dropdown(
                    choices=list(EXAMPLE_IMAGES.keys()),
                    value="Hello World",
                    label="Built-in example (used when no image is uploaded)"
                )
                keyboard_input = gr.Textbox(
                    value="",
                    label="Keyboard input",
                    placeholder="Keys for GETC/IN, \\n for Enter"
                )
                max_cycles = gr.Slider(
                    minimum=100,
                    maximum=1000000,
                    value=100000,
                    step=100,
                    label="Max Cycles"
                )

                run_button = gr.Button("Run", variant="primary")

            with gr.Column(scale=3):
                program_output = gr.Textbox(
                    label="Terminal Output",
                    lines=8,
                    interactive=False
                )
                with gr.Row():
                    summary_output = gr.Textbox(
                        label="Summary",
                        lines=10,
                        interactive=False
                    )
                    registers_output = gr.Textbox(
                        label="Final Registers",
                        lines=10,
                        interactive=False
                    )

                trace_output = gr.Textbox(
                    label="Execution Trace",
                    lines=20,
                    interactive=False
                )

        with gr.Accordion("Trap Reference", open=False):
            gr.Markdown("""
            | Vector | Name | Effect |
            |--------|------|--------|
            | `x20` | GETC | Read a key into R0 (no echo) |
            | `x21` | OUT | Write R0[7:0] |
            | `x22` | PUTS | Write the string at R0, one char per word |
            | `x23` | IN | Prompt, read a key with echo into R0 |
            | `x24` | PUTSP | Write the string at R0, two chars per word |
            | `x25` | HALT | Stop the machine |
            """)

        run_button.click(
            fn=run_image,
            inputs=[image_files, example_dropdown, keyboard_input, max_cycles],
            outputs=[program_output, summary_output, registers_output, trace_output]
        )

    return demo


# =============================================================================
# Main
# =============================================================================

if __name__ == "__main__":
    demo = create_demo()
    demo.launch(
        share=False,
        server_name="0.0.0.0",
        server_port=7861,
        show_error=True
    )
