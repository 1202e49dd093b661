"""
GUI Application for Claude Conversation Views.

A CustomTkinter viewer: pick a session, switch between view levels and
sort orders, expand long messages, and export the current view.
"""

import customtkinter as ctk
from tkinter import messagebox, filedialog, PanedWindow, HORIZONTAL
import threading
from pathlib import Path
from typing import Optional

from .changes import calculate_change_statistics, display_file_name, extract_code_changes
from .config import load_settings
from .core import ConvViewsError, MessageNode, QAPair, ViewLevel
from .exporters import ExportFormat, ExportOptions
from .sessions import JsonlSessionSource, SessionViews


# Configure appearance
ctk.set_appearance_mode("dark")
ctk.set_default_color_theme("blue")

ROLE_COLORS = {
    "user": "#f59e0b",
    "assistant": "#2563eb",
    "system": "gray50",
    "tool": "gray40",
}


class SessionViewerApp(ctk.CTk):
    """Main window: session list on the left, current view on the right."""

    def __init__(self):
        super().__init__()

        self.title("Claude Conversation Views")
        self.geometry("1300x750")
        self.minsize(900, 550)

        self.settings = load_settings()
        self.source = JsonlSessionSource(
            self.settings.projects_dir,
            preferences_path=self.settings.preferences_path,
            default_level=self.settings.default_view_level,
            preview_length=self.settings.preview_length,
        )
        self.views = SessionViews(self.source)

        self.sessions: list[Path] = []
        self.selected_session: Optional[str] = None
        self.expanded: set[str] = set()

        self._create_layout()
        self.after(100, self._load_sessions)

    def _create_layout(self):
        self.grid_rowconfigure(0, weight=1)
        self.grid_columnconfigure(0, weight=1)

        self.paned = PanedWindow(
            self, orient=HORIZONTAL,
            sashwidth=6, sashrelief="raised",
            bg="#2b2b2b"
        )
        self.paned.grid(row=0, column=0, sticky="nsew")

        self._create_sidebar()
        self._create_view_panel()

        self.paned.add(self.sidebar, minsize=250, width=330)
        self.paned.add(self.view_panel, minsize=500, width=950)

    def _create_sidebar(self):
        """Create the left sidebar with the session list."""
        self.sidebar = ctk.CTkFrame(self.paned, corner_radius=0)
        self.sidebar.grid_rowconfigure(2, weight=1)
        self.sidebar.grid_columnconfigure(0, weight=1)

        header = ctk.CTkLabel(
            self.sidebar,
            text="Sessions",
            font=ctk.CTkFont(size=18, weight="bold")
        )
        header.grid(row=0, column=0, padx=20, pady=(20, 10), sticky="w")

        refresh_btn = ctk.CTkButton(
            self.sidebar, text="Refresh", width=80, command=self._load_sessions
        )
        refresh_btn.grid(row=1, column=0, padx=20, pady=(0, 10), sticky="w")

        self.session_list = ctk.CTkScrollableFrame(self.sidebar)
        self.session_list.grid(row=2, column=0, padx=10, pady=10, sticky="nsew")
        self.session_list.grid_columnconfigure(0, weight=1)

    def _create_view_panel(self):
        """Create the right panel with level selector, messages and export."""
        self.view_panel = ctk.CTkFrame(self.paned, corner_radius=0)
        self.view_panel.grid_rowconfigure(2, weight=1)
        self.view_panel.grid_columnconfigure(0, weight=1)

        toolbar = ctk.CTkFrame(self.view_panel, fg_color="transparent")
        toolbar.grid(row=0, column=0, padx=15, pady=(20, 5), sticky="ew")
        toolbar.grid_columnconfigure(2, weight=1)

        self.level_selector = ctk.CTkSegmentedButton(
            toolbar,
            values=[level.display_name for level in ViewLevel],
            command=self._on_level_change,
        )
        self.level_selector.grid(row=0, column=0, padx=(0, 10))

        self.order_menu = ctk.CTkOptionMenu(
            toolbar, values=["Log order", "Oldest first", "Newest first"],
            command=lambda _: self._show_view(), width=130
        )
        self.order_menu.grid(row=0, column=1, padx=(0, 10))

        self.format_menu = ctk.CTkOptionMenu(
            toolbar, values=[f.value for f in ExportFormat], width=110
        )
        self.format_menu.grid(row=0, column=3, padx=(0, 5))

        self.export_btn = ctk.CTkButton(
            toolbar, text="Export...", width=90, state="disabled",
            command=self._do_export, fg_color="#1a5f2a", hover_color="#228B22"
        )
        self.export_btn.grid(row=0, column=4)

        self.stats_label = ctk.CTkLabel(
            self.view_panel, text="Select a session",
            font=ctk.CTkFont(size=12), text_color="gray", anchor="w"
        )
        self.stats_label.grid(row=1, column=0, padx=20, pady=(0, 5), sticky="ew")

        self.message_list = ctk.CTkScrollableFrame(self.view_panel)
        self.message_list.grid(row=2, column=0, padx=10, pady=10, sticky="nsew")
        self.message_list.grid_columnconfigure(0, weight=1)

    # =========================================================================
    # Data Loading
    # =========================================================================

    def _load_sessions(self):
        for widget in self.session_list.winfo_children():
            widget.destroy()

        loading = ctk.CTkLabel(self.session_list, text="Loading sessions...")
        loading.grid(row=0, column=0, pady=20)
        self.update()

        def load():
            self.sessions = self.source.list_sessions()
            self.after(0, self._display_sessions)

        threading.Thread(target=load, daemon=True).start()

    def _display_sessions(self):
        for widget in self.session_list.winfo_children():
            widget.destroy()

        if not self.sessions:
            empty = ctk.CTkLabel(self.session_list, text="No sessions found", text_color="gray")
            empty.grid(row=0, column=0, pady=20)
            return

        for i, path in enumerate(self.sessions):
            btn = ctk.CTkButton(
                self.session_list,
                text=f"{path.stem[:18]}\n{path.parent.name[-32:]}",
                anchor="w", height=44,
                fg_color="transparent", hover_color="gray25",
                font=ctk.CTkFont(size=11),
                command=lambda p=path: self._select_session(p)
            )
            btn.grid(row=i, column=0, pady=2, sticky="ew")

    def _select_session(self, path: Path):
        self.selected_session = str(path)
        self.expanded.clear()
        level = self.source.get_view_level_preference(self.selected_session)
        self.level_selector.set(level.display_name)
        self.export_btn.configure(state="normal")
        self._show_view()

    def _current_level(self) -> ViewLevel:
        label = self.level_selector.get()
        for level in ViewLevel:
            if level.display_name == label:
                return level
        return self.settings.default_view_level

    def _current_order(self) -> Optional[str]:
        return {"Oldest first": "asc", "Newest first": "desc"}.get(self.order_menu.get())

    def _on_level_change(self, _label: str):
        if self.selected_session is None:
            return
        self.views.set_view_level(self.selected_session, self._current_level())
        self._show_view()

    def _show_view(self):
        if self.selected_session is None:
            return

        session_id = self.selected_session
        level = self._current_level()
        order = self._current_order()
        self.stats_label.configure(text="Loading...")

        def load():
            try:
                view = self.views.get_view(session_id, level, order)
                tree = self.source.get_tree(session_id)
                stats = calculate_change_statistics(tree)
            except (OSError, ConvViewsError) as e:
                self.after(0, self._show_error, f"Error: {e}")
                return
            summary = (
                f"{tree.total_count} records | {tree.thread_count} threads | "
                f"{len(view)} shown | {stats.total_files} files changed "
                f"(+{stats.lines_added} -{stats.lines_removed})"
            )
            self.after(0, lambda: self._display_view(view, summary))

        threading.Thread(target=load, daemon=True).start()

    def _show_error(self, message: str):
        self.stats_label.configure(text=message)

    def _display_view(self, view, summary: str):
        for widget in self.message_list.winfo_children():
            widget.destroy()

        self.stats_label.configure(text=summary)
        row = 0
        for item in view:
            if isinstance(item, QAPair):
                row = self._create_message_card(item.question, row, f"Q{item.index}")
                if item.answer is not None:
                    row = self._create_message_card(item.answer, row, f"A{item.index}")
                else:
                    ctk.CTkLabel(
                        self.message_list, text="(no answer)", text_color="gray"
                    ).grid(row=row, column=0, padx=20, sticky="w")
                    row += 1
            else:
                row = self._create_message_card(item, row)

    def _create_message_card(self, node: MessageNode, row: int, label: Optional[str] = None) -> int:
        """Create a card for one message; returns the next free row."""
        card = ctk.CTkFrame(self.message_list)
        card.grid(row=row, column=0, padx=5, pady=4, sticky="ew")
        card.grid_columnconfigure(0, weight=1)

        header = f"{label + '  ' if label else ''}{node.role}  {node.timestamp[:19]}"
        ctk.CTkLabel(
            card, text=header,
            font=ctk.CTkFont(size=11, weight="bold"),
            text_color=ROLE_COLORS.get(node.role, "gray")
        ).grid(row=0, column=0, padx=10, pady=(6, 0), sticky="w")

        expanded = node.id in self.expanded
        body = node.extracted_full_text if expanded else node.extracted_text
        ctk.CTkLabel(
            card, text=body or "(empty)",
            font=ctk.CTkFont(family="Consolas", size=12),
            anchor="w", justify="left", wraplength=820
        ).grid(row=1, column=0, padx=10, pady=(2, 6), sticky="ew")

        next_row = 2
        changes = extract_code_changes(node)
        if changes:
            files = ", ".join(display_file_name(c.file_path) for c in changes)
            ctk.CTkLabel(
                card, text=f"Files: {files}", font=ctk.CTkFont(size=11), text_color="#22c55e"
            ).grid(row=next_row, column=0, padx=10, pady=(0, 4), sticky="w")
            next_row += 1

        if node.has_more:
            ctk.CTkButton(
                card, text="Show less" if expanded else "Show more",
                width=90, height=22, font=ctk.CTkFont(size=11),
                fg_color="gray30", hover_color="gray40",
                command=lambda n=node: self._toggle_expand(n)
            ).grid(row=next_row, column=0, padx=10, pady=(0, 6), sticky="w")

        return row + 1

    def _toggle_expand(self, node: MessageNode):
        if node.id in self.expanded:
            self.expanded.discard(node.id)
        else:
            self.expanded.add(node.id)
        self._show_view()

    # =========================================================================
    # Export
    # =========================================================================

    def _do_export(self):
        if self.selected_session is None:
            return

        options = ExportOptions(
            format=self.format_menu.get(),
            include_metadata=True,
            include_code_blocks=True,
            include_timestamps=True,
            csv_cell_limit=self.settings.csv_cell_limit,
            max_diff_lines=self.settings.max_diff_lines,
            keep_diff_lines=self.settings.keep_diff_lines,
        )
        try:
            result = self.views.export(self.selected_session, options, self._current_level())
        except (OSError, ConvViewsError) as e:
            messagebox.showerror("Export failed", str(e))
            return

        target = filedialog.asksaveasfilename(initialfile=result.filename)
        if not target:
            return
        Path(target).write_text(result.content, encoding="utf-8")
        messagebox.showinfo("Export", f"Saved {result.size} bytes to {target}")


def run_gui():
    """Entry point for GUI application."""
    app = SessionViewerApp()
    app.mainloop()


if __name__ == "__main__":
    run_gui()
