"""
browser/scripts.py
------------------
Wayfarer – JavaScript snippets evaluated inside the page

Every builder returns a self-contained expression (usually an IIFE) with all
arguments embedded through ``json.dumps`` so selectors and text are quoted
safely. They serve as DOM-level fallbacks when the debugger channel is
unavailable, and as read-only probes (element lookup, page text).
"""

from __future__ import annotations

import json

HIGHLIGHT_ID = "__wayfarer_highlight__"
OVERLAY_ID = "__wayfarer_overlay__"

INTERACTIVE_SELECTOR = (
    'a, button, input, select, textarea, [role="button"], [role="link"], '
    '[role="tab"], [role="menuitem"], [onclick], [tabindex]'
)


def _q(value: object) -> str:
    return json.dumps(value)


# ---------------------------------------------------------------------------
# Input fallbacks
# ---------------------------------------------------------------------------

def click_at_point(x: int, y: int) -> str:
    return f"""
    (function() {{
        const el = document.elementFromPoint({x}, {y});
        if (!el) return null;
        const opts = {{ bubbles: true, cancelable: true, clientX: {x}, clientY: {y}, button: 0 }};
        el.dispatchEvent(new MouseEvent('mouseover', opts));
        el.dispatchEvent(new MouseEvent('mousedown', opts));
        el.focus && el.focus();
        el.dispatchEvent(new MouseEvent('mouseup', opts));
        el.dispatchEvent(new MouseEvent('click', opts));
        return {{ tag: el.tagName, text: (el.innerText || '').substring(0, 50) }};
    }})()
    """


def hover_at_point(x: int, y: int) -> str:
    return f"""
    (function() {{
        const el = document.elementFromPoint({x}, {y});
        if (!el) return false;
        el.dispatchEvent(new MouseEvent('mouseover', {{ bubbles: true, clientX: {x}, clientY: {y} }}));
        el.dispatchEvent(new MouseEvent('mousemove', {{ bubbles: true, clientX: {x}, clientY: {y} }}));
        return true;
    }})()
    """


def type_into_active(text: str) -> str:
    return f"""
    (function() {{
        const el = document.activeElement;
        if (!el) return false;
        const text = {_q(text)};
        if (el.isContentEditable) {{
            el.textContent = (el.textContent || '') + text;
        }} else if (el.tagName === 'INPUT' || el.tagName === 'TEXTAREA') {{
            const start = el.selectionStart ?? el.value.length;
            const end = el.selectionEnd ?? start;
            el.value = el.value.substring(0, start) + text + el.value.substring(end);
            el.selectionStart = el.selectionEnd = start + text.length;
        }} else {{
            return false;
        }}
        el.dispatchEvent(new Event('input', {{ bubbles: true }}));
        el.dispatchEvent(new Event('change', {{ bubbles: true }}));
        return true;
    }})()
    """


def dispatch_key(key: str, code: str, key_code: int, modifiers: set[str]) -> str:
    return f"""
    (function() {{
        const el = document.activeElement || document.body;
        const opts = {{
            key: {_q(key)},
            code: {_q(code)},
            keyCode: {key_code},
            which: {key_code},
            bubbles: true,
            cancelable: true,
            shiftKey: {_q("shift" in modifiers)},
            ctrlKey: {_q("ctrl" in modifiers)},
            altKey: {_q("alt" in modifiers)},
            metaKey: {_q("meta" in modifiers)}
        }};
        el.dispatchEvent(new KeyboardEvent('keydown', opts));
        el.dispatchEvent(new KeyboardEvent('keypress', opts));
        el.dispatchEvent(new KeyboardEvent('keyup', opts));
        if (opts.key === 'Enter') {{
            const form = el.closest && el.closest('form');
            if (form) form.dispatchEvent(new Event('submit', {{ bubbles: true, cancelable: true }}));
        }}
        return true;
    }})()
    """


def scroll_by(delta_x: int, delta_y: int) -> str:
    return f"window.scrollBy({delta_x}, {delta_y}); true"


# ---------------------------------------------------------------------------
# Selector-based helpers
# ---------------------------------------------------------------------------

def locate_element(selector: str) -> str:
    """Scroll the element to the viewport centre and report its centre point."""
    return f"""
    (function() {{
        const el = document.querySelector({_q(selector)});
        if (!el) return {{ error: 'Element not found: ' + {_q(selector)} }};
        el.scrollIntoView({{ behavior: 'instant', block: 'center' }});
        const rect = el.getBoundingClientRect();
        return {{
            x: Math.round(rect.x + rect.width / 2),
            y: Math.round(rect.y + rect.height / 2),
            tag: el.tagName.toLowerCase(),
            href: el.href || null,
            visible: rect.width > 0 && rect.height > 0
        }};
    }})()
    """


def click_selector(selector: str) -> str:
    return f"""
    (function() {{
        const el = document.querySelector({_q(selector)});
        if (!el) return false;
        const rect = el.getBoundingClientRect();
        const cx = Math.round(rect.x + rect.width / 2);
        const cy = Math.round(rect.y + rect.height / 2);
        const opts = {{ bubbles: true, cancelable: true, clientX: cx, clientY: cy, button: 0 }};
        el.dispatchEvent(new MouseEvent('mouseover', opts));
        el.dispatchEvent(new MouseEvent('mousedown', opts));
        el.focus && el.focus();
        el.dispatchEvent(new MouseEvent('mouseup', opts));
        el.dispatchEvent(new MouseEvent('click', opts));
        if (el.tagName === 'A' && el.href && !el.href.startsWith('javascript:')) {{
            window.location.href = el.href;
        }}
        return true;
    }})()
    """


def prepare_fill(selector: str) -> str:
    return f"""
    (function() {{
        const el = document.querySelector({_q(selector)});
        if (!el) return {{ error: 'Element not found: ' + {_q(selector)} }};
        el.scrollIntoView({{ behavior: 'instant', block: 'center' }});
        el.focus();
        el.click();
        if (el.tagName === 'INPUT' || el.tagName === 'TEXTAREA') el.select();
        return {{ success: true, tag: el.tagName.toLowerCase() }};
    }})()
    """


def set_value(selector: str, value: str) -> str:
    """Assign through the native setter so framework-managed inputs notice."""
    return f"""
    (function() {{
        const el = document.querySelector({_q(selector)});
        if (!el) return {{ error: 'Element not found: ' + {_q(selector)} }};
        const proto = el.tagName === 'TEXTAREA' ? HTMLTextAreaElement.prototype : HTMLInputElement.prototype;
        const setter = Object.getOwnPropertyDescriptor(proto, 'value')?.set;
        if (setter) setter.call(el, {_q(value)}); else el.value = {_q(value)};
        el.dispatchEvent(new Event('input', {{ bubbles: true }}));
        el.dispatchEvent(new Event('change', {{ bubbles: true }}));
        return {{ success: true, method: 'js-fallback' }};
    }})()
    """


# ---------------------------------------------------------------------------
# Read-only probes
# ---------------------------------------------------------------------------

def query_elements(selector: str, limit: int = 50) -> str:
    return f"""
    (function() {{
        const els = document.querySelectorAll({_q(selector)});
        return Array.from(els).slice(0, {limit}).map((el, i) => {{
            const rect = el.getBoundingClientRect();
            return {{
                index: i,
                tag: el.tagName.toLowerCase(),
                id: el.id || null,
                className: (typeof el.className === 'string' ? el.className : null) || null,
                text: el.innerText?.substring(0, 200) || '',
                value: el.value || null,
                href: el.href || null,
                placeholder: el.placeholder || null,
                type: el.type || null,
                ariaLabel: el.getAttribute('aria-label') || null,
                x: Math.round(rect.x + rect.width / 2),
                y: Math.round(rect.y + rect.height / 2),
                width: Math.round(rect.width),
                height: Math.round(rect.height),
                visible: rect.width > 0 && rect.height > 0
            }};
        }});
    }})()
    """


def interactive_elements(limit: int = 100) -> str:
    """Visible, on-screen interactive elements with their centre points."""
    return f"""
    (function() {{
        const els = document.querySelectorAll({_q(INTERACTIVE_SELECTOR)});
        return Array.from(els).slice(0, {limit}).map((el, i) => {{
            const rect = el.getBoundingClientRect();
            return {{
                index: i,
                tag: el.tagName.toLowerCase(),
                id: el.id || null,
                text: (el.innerText || el.value || el.placeholder || el.getAttribute('aria-label') || '').substring(0, 100),
                type: el.type || null,
                href: el.href || null,
                x: Math.round(rect.x + rect.width / 2),
                y: Math.round(rect.y + rect.height / 2),
                width: Math.round(rect.width),
                height: Math.round(rect.height),
                visible: rect.width > 0 && rect.height > 0 && rect.y >= 0 && rect.y < window.innerHeight
            }};
        }}).filter(el => el.visible);
    }})()
    """


def page_content(limit: int = 20000) -> str:
    return f"""
    (function() {{
        const el = document.body.cloneNode(true);
        el.querySelectorAll('script, style').forEach(s => s.remove());
        return {{
            text: (el.innerText || '').substring(0, {limit}),
            title: document.title,
            url: window.location.href
        }};
    }})()
    """


# ---------------------------------------------------------------------------
# Visual feedback
# ---------------------------------------------------------------------------

def highlight(x: int, y: int) -> str:
    """A short-lived pulsing dot where the pointer is about to act."""
    return f"""
    (function() {{
        const old = document.getElementById({_q(HIGHLIGHT_ID)});
        if (old) old.remove();
        if (!document.getElementById('__wayfarer_styles__')) {{
            const style = document.createElement('style');
            style.id = '__wayfarer_styles__';
            style.textContent = '@keyframes __wayfarer_pulse__ {{' +
                ' 0% {{ transform: scale(0.5); opacity: 1; }}' +
                ' 100% {{ transform: scale(2); opacity: 0; }} }}';
            document.head.appendChild(style);
        }}
        const dot = document.createElement('div');
        dot.id = {_q(HIGHLIGHT_ID)};
        dot.style.cssText = 'position:fixed;z-index:2147483647;pointer-events:none;' +
            'width:24px;height:24px;border-radius:50%;' +
            'background:rgba(59,130,246,0.5);border:2px solid #f59e0b;' +
            'left:{x - 12}px;top:{y - 12}px;' +
            'animation:__wayfarer_pulse__ 0.6s ease-out forwards;';
        document.body.appendChild(dot);
        setTimeout(() => dot.remove(), 700);
        return true;
    }})()
    """


def show_overlay(label: str = "AI is in control") -> str:
    return f"""
    (function() {{
        if (document.getElementById({_q(OVERLAY_ID)})) return true;
        const frame = document.createElement('div');
        frame.id = {_q(OVERLAY_ID)};
        frame.style.cssText = 'position:fixed;inset:0;z-index:2147483646;pointer-events:none;' +
            'border:4px solid #3b82f6;background:rgba(59,130,246,0.03);';
        const badge = document.createElement('div');
        badge.textContent = {_q(label)};
        badge.style.cssText = 'position:absolute;top:14px;left:50%;transform:translateX(-50%);' +
            'background:rgba(10,12,20,.95);border:2px solid rgba(59,130,246,.9);color:#fff;' +
            'padding:10px 24px;border-radius:30px;font:700 14px/1 system-ui,sans-serif;';
        frame.appendChild(badge);
        document.documentElement.appendChild(frame);
        return true;
    }})()
    """


def hide_overlay() -> str:
    return f"""
    (function() {{
        const frame = document.getElementById({_q(OVERLAY_ID)});
        if (frame) frame.remove();
        return true;
    }})()
    """
