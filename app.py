"""
app.py  —  Campus Election Kiosk
================================
Full-screen voting kiosk:
  tap RFID card → face check → choose election → ballot → review
  → final review → submission → receipt → back to the welcome screen

Store: "memory" (seeded from data/*.csv) or "mysql" — set "store" in
config.json. The camera is simulated: the operator panel shows the
descriptor that will be "captured" and can be edited to force a mismatch.
"""

import json, logging, os, sys
import tkinter as tk
from tkinter import scrolledtext, ttk

# ── IMPORTANT: import messagebox this way for Python 3.13 compatibility
from tkinter import messagebox   # noqa — must be separate import

_DIR = os.path.dirname(os.path.abspath(__file__))
if _DIR not in sys.path:
    sys.path.insert(0, _DIR)

from kiosk import state_machine as sm
from kiosk.biometrics import SimulatedFaceMatcher
from kiosk.catalog import sort_elections
from kiosk.config import load_config, load_settings
from kiosk.db import MySQLStore, test_connection
from kiosk.errors import BallotError, InvalidTransition
from kiosk.models import ABSTAIN
from kiosk.rfid import KeyboardWedgeReader
from kiosk.seed import build_demo_store
from kiosk.submission import LogMailer, STAGES

logging.basicConfig(level=logging.INFO, format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
                    datefmt="%Y-%m-%d %H:%M:%S")

_CFG = load_config()
SETTINGS = load_settings()

# ── Colours ──────────────────────────────────────────────────────────
BG   = "#1e2130"; PANEL = "#252a3d"; ACCENT = "#4a90e2"
OK   = "#27ae60"; ERR   = "#e74c3c"; TEXT   = "#ecf0f1"
SUB  = "#95a5a6"; GOLD  = "#f39c12"; HDR    = "#2c3e6b"

STAGE_LABELS = {
    "recording": "Recording votes",
    "anchoring": "Anchoring receipt",
    "notifying": "Sending confirmation",
}


# ── Shared helpers ───────────────────────────────────────────────────
def apply_styles(root):
    s = ttk.Style(root); s.theme_use("clam")
    s.configure("D.TFrame", background=BG)
    s.configure("D.TRadiobutton", background=PANEL, foreground=TEXT,
                font=("Segoe UI", 11))
    s.map("D.TRadiobutton", background=[("active", HDR)])

def mk_log(parent, h=6):
    w = scrolledtext.ScrolledText(parent, height=h, font=("Consolas", 9),
        bg="#0d1117", fg=TEXT, insertbackground=TEXT, state="disabled", relief="flat")
    w.tag_config("ok",   foreground=OK)
    w.tag_config("err",  foreground=ERR)
    w.tag_config("info", foreground=TEXT)
    return w

def log_append(w, msg, tag="info"):
    w.configure(state="normal")
    w.insert(tk.END, msg + "\n", tag)
    w.see(tk.END)
    w.configure(state="disabled")

def lbl(parent, text, size=10, bold=False, fg=TEXT, bg=BG):
    return tk.Label(parent, text=text,
                    font=("Segoe UI", size, "bold" if bold else "normal"),
                    bg=bg, fg=fg, justify="center")

def big_btn(parent, text, cmd, bg=ACCENT, fg="white"):
    return tk.Button(parent, text=text, command=cmd,
                     font=("Segoe UI", 11, "bold"), bg=bg, fg=fg,
                     relief="flat", padx=16, pady=7, cursor="hand2")

def small_btn(parent, text, cmd, bg=PANEL, fg=TEXT):
    return tk.Button(parent, text=text, command=cmd,
                     font=("Segoe UI", 10), bg=bg, fg=fg,
                     relief="flat", padx=12, pady=5, cursor="hand2")

def fentry(parent, var, width=28):
    return tk.Entry(parent, textvariable=var, font=("Segoe UI", 10),
                    bg="#151922", fg=TEXT, insertbackground=TEXT,
                    relief="flat", bd=4, width=width)

def safe_warn(title, msg, parent=None):
    """Messagebox call that works even before the window is fully ready."""
    try:
        messagebox.showwarning(title, msg, parent=parent)
    except tk.TclError:
        print(f"[WARN] {title}: {msg}")

def build_store():
    if _CFG.get("store", "memory") == "mysql":
        return MySQLStore(_CFG["db"])
    return build_demo_store()


# ══════════════════════════════════════════════════════════════════════
#  KIOSK WINDOW
# ══════════════════════════════════════════════════════════════════════
class KioskWindow(tk.Tk):
    def __init__(self):
        super().__init__()
        self.title("Campus Election Kiosk")
        self.geometry("980x760"); self.minsize(860, 640)
        self.configure(bg=BG)
        apply_styles(self)

        self.face = SimulatedFaceMatcher(threshold=SETTINGS["face_threshold"])
        self.reader = KeyboardWedgeReader(SETTINGS["min_rfid_length"])
        self.machine = sm.KioskStateMachine(
            build_store(), self.face, SETTINGS,
            mailer=LogMailer(self._emit), log_fn=self._emit)
        self.machine.bind_reader(self.reader)
        self._rendered = None
        self._vars = []

        self._build_header()
        self.body = tk.Frame(self, bg=BG); self.body.pack(fill="both", expand=True)
        self._log = mk_log(self); self._log.pack(fill="x", side="bottom")
        self.bind("<Key>", self._on_key)

        self._render()
        self.after(1000, self._on_tick)
        self.after(SETTINGS["heartbeat_seconds"] * 1000, self._on_heartbeat)
        if _CFG.get("store") == "mysql":
            self.after(800, self._db_check)

    def _build_header(self):
        bar = tk.Frame(self, bg=HDR, height=58)
        bar.pack(fill="x"); bar.pack_propagate(False)
        lbl(bar, "🗳  CAMPUS ELECTION KIOSK", 14, True, fg="white", bg=HDR
            ).pack(side="left", padx=20, pady=12)
        self._timer_lbl = lbl(bar, "", 12, True, fg=GOLD, bg=HDR)
        self._timer_lbl.pack(side="right", padx=20)

    def _emit(self, msg, tag="info"):
        self.after(0, lambda: log_append(self._log, msg, tag))

    def _db_check(self):
        if not test_connection(_CFG["db"]):
            safe_warn("Database", "Cannot reach the election database. Check config.json.", self)

    # ── event pumps ─────────────────────────────────────────────────
    def _on_key(self, event):
        if self.machine.step == sm.AUTH and not isinstance(event.widget, tk.Entry):
            self.reader.feed_key(event.keysym if event.keysym == "Return" else event.char)
            self._render()

    def _on_tick(self):
        event = self.machine.tick()
        if event == "grace":
            safe_warn("Time is up",
                      f"Your voting time is up, but we've added "
                      f"{SETTINGS['grace_seconds']} seconds so you can finish.\n\n"
                      "Please try to vote a little faster.", self)
            self.machine.acknowledge_timeout()
        self._refresh_timer()
        if (event is not None or self._rendered != self._render_key()
                or self.machine.step in (sm.SUBMITTING, sm.COMPLETE, sm.ERROR)):
            self._render()
        self.after(1000, self._on_tick)

    def _on_heartbeat(self):
        self.machine.heartbeat()
        if self._rendered != self._render_key():
            self._render()
        self.after(SETTINGS["heartbeat_seconds"] * 1000, self._on_heartbeat)

    def _refresh_timer(self):
        t = self.machine.timer
        self._timer_lbl.config(text=f"⏱ {t.format_remaining()}" if t.started else "")

    def _render_key(self):
        m = self.machine
        return (m.step, m.pending_auth is not None,
                m.selected_election.id if m.selected_election else None)

    def _act(self, fn, *args):
        try:
            fn(*args)
        except (BallotError, InvalidTransition) as exc:
            safe_warn("Ballot", str(exc), self)
        self._render()

    # ── rendering ───────────────────────────────────────────────────
    def _render(self):
        self._rendered = self._render_key()
        self._vars = []
        for w in self.body.winfo_children():
            w.destroy()
        {
            sm.AUTH:              self._auth_screen,
            sm.ELECTION_SELECT:   self._select_screen,
            sm.BALLOT:            self._ballot_screen,
            sm.REVIEW:            self._review_screen,
            sm.ELECTION_FINISHED: self._finished_screen,
            sm.REVIEW_FINAL:      self._final_screen,
            sm.SUBMITTING:        self._submitting_screen,
            sm.COMPLETE:          self._complete_screen,
            sm.ERROR:             self._error_screen,
        }[self.machine.step]()

    def _auth_screen(self):
        f = self.body
        pending = self.machine.pending_auth
        lbl(f, "Welcome", 20, True).pack(pady=(30, 4))
        if pending is None:
            lbl(f, "Tap your student ID on the reader to begin.", 12, fg=SUB).pack()
            row = tk.Frame(f, bg=BG); row.pack(pady=16)
            tag_var = tk.StringVar()
            e = fentry(row, tag_var, 24); e.pack(side="left", padx=6)
            small_btn(row, "Enter tag (testing)",
                      lambda: self._act(self.machine.scan_rfid, tag_var.get())).pack(side="left")
            return

        lbl(f, "RFID verified. Look at the camera.", 12, fg=OK).pack()
        if pending.override:
            lbl(f, "Staff override: voter will be identified by face.", 10, fg=GOLD).pack()
        stored = pending.voter.face_descriptor if pending.voter else []
        desc_var = tk.StringVar(value=json.dumps(stored))
        lbl(f, "Simulated camera descriptor:", 9, fg=SUB).pack(pady=(18, 2))
        fentry(f, desc_var, 80).pack()
        big_btn(f, "📷  Capture face", lambda: self._capture(desc_var.get())).pack(pady=14)

    def _capture(self, raw):
        try:
            descriptor = [float(x) for x in json.loads(raw or "[]")]
        except (ValueError, TypeError):
            safe_warn("Camera", "Descriptor must be a JSON list of numbers.", self)
            return
        self.face.present(descriptor)
        self.machine.submit_face()
        self._render()

    def _select_screen(self):
        f, m = self.body, self.machine
        lbl(f, f"Hello, {m.voter.full_name}", 16, True).pack(pady=(20, 2))
        lbl(f, "Choose an election to vote in.", 11, fg=SUB).pack(pady=(0, 12))
        listed = sort_elections(m.active_elections + m.upcoming_elections + m.expired_elections)
        for election in listed:
            row = tk.Frame(f, bg=PANEL); row.pack(fill="x", padx=60, pady=4)
            lbl(row, election.title, 12, True, bg=PANEL).pack(side="left", padx=12, pady=8)
            if election.id in m.completed_elections:
                lbl(row, "✔ Voted", 10, fg=OK, bg=PANEL).pack(side="right", padx=12)
            elif election in m.active_elections:
                big_btn(row, "Vote", lambda eid=election.id: self._act(m.select_election, eid)
                        ).pack(side="right", padx=8, pady=4)
            elif election in m.upcoming_elections:
                lbl(row, "Upcoming", 10, fg=GOLD, bg=PANEL).pack(side="right", padx=12)
            else:
                lbl(row, "Closed", 10, fg=SUB, bg=PANEL).pack(side="right", padx=12)
        if not m.remaining_elections:
            lbl(f, "There is nothing left for you to vote in.", 11, fg=GOLD).pack(pady=12)
            big_btn(f, "Finish", lambda: self._act(m.reset)).pack()

    def _ballot_screen(self):
        f, m = self.body, self.machine
        ballot = m.ballot
        lbl(f, m.selected_election.title, 16, True).pack(pady=(14, 2))
        lbl(f, "You may abstain from any position.", 10, fg=SUB).pack(pady=(0, 8))
        for position, candidates in ballot.positions:
            box = tk.Frame(f, bg=PANEL); box.pack(fill="x", padx=60, pady=5)
            lbl(box, position, 12, True, fg=ACCENT, bg=PANEL).pack(anchor="w", padx=12, pady=(6, 2))
            var = tk.StringVar(value=ballot.choices.get(position, ""))
            self._vars.append(var)
            for c in candidates:
                ttk.Radiobutton(box, text=f"{c.name}  ({c.slate or 'Independent'})", value=c.id,
                                variable=var, style="D.TRadiobutton",
                                command=lambda p=position, v=var: self._act(ballot.select, p, v.get())
                                ).pack(anchor="w", padx=24)
            ttk.Radiobutton(box, text="Abstain", value=ABSTAIN, variable=var, style="D.TRadiobutton",
                            command=lambda p=position: self._abstain(p)).pack(anchor="w", padx=24, pady=(0, 6))
        big_btn(f, "Review ballot →", lambda: self._act(m.complete_ballot)).pack(pady=12)

    def _abstain(self, position):
        ballot = self.machine.ballot
        ballot.request_abstain(position)
        if messagebox.askyesno("Confirm abstention",
                               f"Abstain from voting for {position}?", parent=self):
            ballot.confirm_abstain()
        else:
            ballot.cancel_abstain()
        self._render()

    def _selection_table(self, parent, groups):
        for _, selections in groups:
            lbl(parent, selections[0].election_name or selections[0].election_id,
                12, True, fg=ACCENT).pack(pady=(10, 2))
            for s in selections:
                lbl(parent, f"{s.position}:  {s.candidate_name}  [{s.slate}]", 11).pack()

    def _review_screen(self):
        f, m = self.body, self.machine
        lbl(f, "Review your ballot", 16, True).pack(pady=(20, 6))
        self._selection_table(f, [(m.reviewing_election.id, m.current_selections)])
        row = tk.Frame(f, bg=BG); row.pack(pady=18)
        small_btn(row, "← Edit", lambda: self._act(m.edit_ballot)).pack(side="left", padx=8)
        big_btn(row, "Confirm", lambda: self._act(m.confirm_review), bg=OK).pack(side="left", padx=8)

    def _finished_screen(self):
        f, m = self.body, self.machine
        more = bool(m.remaining_elections)
        lbl(f, "Election Completed" if more else "All Elections Completed", 18, True).pack(pady=(40, 8))
        lbl(f, "Please continue to vote in your other eligible elections." if more else
            "Please review your selections before final submission.", 11, fg=SUB).pack()
        big_btn(f, "Continue" if more else "Review Votes",
                lambda: self._act(m.continue_voting)).pack(pady=20)

    def _final_screen(self):
        f, m = self.body, self.machine
        lbl(f, "Final review", 16, True).pack(pady=(20, 4))
        lbl(f, "Votes cannot be changed after submission.", 10, fg=GOLD).pack()
        self._selection_table(f, m.selections_by_election())
        big_btn(f, "Submit my votes", lambda: self._act(m.confirm_final_review), bg=OK).pack(pady=20)

    def _submitting_screen(self):
        f, job = self.body, self.machine.job
        lbl(f, "Processing your vote ...", 16, True).pack(pady=(40, 12))
        for stage in STAGES:
            state = job.stages[stage]
            colour = OK if state == "confirmed" else ERR if state == "failed" else SUB
            lbl(f, f"{STAGE_LABELS[stage]}: {state}", 11, fg=colour).pack(pady=2)

    def _complete_screen(self):
        f, m = self.body, self.machine
        r = m.receipt
        lbl(f, "Vote Recorded Successfully!", 18, True, fg=OK).pack(pady=(30, 8))
        if r.tx_hash:
            lbl(f, f"Transaction: {r.tx_hash}", 9, fg=GOLD).pack()
        for eid, h in r.receipt_hashes.items():
            lbl(f, f"{eid}: {h}", 9, fg=SUB).pack()
        if r.duplicates:
            lbl(f, "Already recorded earlier: " + ", ".join(r.duplicates), 10, fg=GOLD).pack(pady=6)
        lbl(f, f"Returning to the welcome screen in {m.countdown}s", 10, fg=SUB).pack(pady=12)
        big_btn(f, "Done", lambda: self._act(m.reset)).pack()

    def _error_screen(self):
        f, m = self.body, self.machine
        lbl(f, "Something went wrong", 18, True, fg=ERR).pack(pady=(40, 8))
        lbl(f, m.error_message or "", 11).pack(padx=40)
        lbl(f, f"Returning to the welcome screen in {m.countdown}s", 10, fg=SUB).pack(pady=12)
        big_btn(f, "Return now", lambda: self._act(m.reset)).pack()


def main():
    KioskWindow().mainloop()


if __name__ == "__main__":
    main()
